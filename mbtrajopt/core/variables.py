# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Decision variables and affine expressions over them.

A DecisionVariables object is an array of integer indices into the flat
decision vector of a MathematicalProgram. It supports numpy-style indexing,
so a column of a (rows, cols) block is itself a DecisionVariables object.
Arithmetic on decision variables produces an AffineExpression, which can be
projected onto a solution vector.
"""

from typing import Optional, Sequence, Union

import numpy as np


class DecisionVariables:
    """Block of decision variables identified by their program indices.

    Attributes:
        indices: Integer array of program indices with the block's shape.
        name: Optional name used in representations.

    Example:
        >>> q = program.new_continuous_variables(3, 5, name='q')
        >>> q[0, 0]        # scalar variable
        >>> q.col(4)       # final sample, shape (3,)
        >>> 2.0 * q[:, 1] - q[:, 0]   # AffineExpression
    """

    # Make numpy defer binary operators to the reflected methods below.
    __array_ufunc__ = None

    def __init__(self, indices, name: Optional[str] = None):
        self.indices = np.asarray(indices, dtype=np.int64)
        self.name = name

    @property
    def shape(self):
        return self.indices.shape

    @property
    def size(self) -> int:
        return int(self.indices.size)

    @property
    def ndim(self) -> int:
        return self.indices.ndim

    def __len__(self) -> int:
        return len(self.indices)

    def __getitem__(self, key) -> 'DecisionVariables':
        return DecisionVariables(self.indices[key], self.name)

    def col(self, j: int) -> 'DecisionVariables':
        """Returns column j of a 2-D block."""
        return self[:, j]

    def row(self, i: int) -> 'DecisionVariables':
        """Returns row i of a 2-D block."""
        return self[i, :]

    @property
    def T(self) -> 'DecisionVariables':
        return DecisionVariables(self.indices.T, self.name)

    def flatten(self) -> 'DecisionVariables':
        """Returns the variables in column-major order as a 1-D block."""
        return DecisionVariables(self.indices.flatten(order='F'), self.name)

    def reshape(self, *shape) -> 'DecisionVariables':
        return DecisionVariables(self.indices.reshape(*shape), self.name)

    def to_expression(self) -> 'AffineExpression':
        flat = self.indices.ravel()
        return AffineExpression(
            flat, np.eye(flat.size), np.zeros(flat.size), self.shape
        )

    def __neg__(self):
        return -self.to_expression()

    def __add__(self, other):
        return self.to_expression() + other

    def __radd__(self, other):
        return self.to_expression() + other

    def __sub__(self, other):
        return self.to_expression() - other

    def __rsub__(self, other):
        return other + (-self.to_expression())

    def __mul__(self, other):
        return self.to_expression() * other

    def __rmul__(self, other):
        return self.to_expression() * other

    def __rmatmul__(self, other):
        return other @ self.to_expression()

    def __repr__(self) -> str:
        name = self.name or 'x'
        return f'DecisionVariables({name}, shape={self.shape})'


class AffineExpression:
    """Affine function A @ x[indices] + b of the decision vector.

    The output is reshaped to `shape` (row-major).

    Attributes:
        indices: Flat program indices the expression depends on, (k,).
        coefficients: Coefficient matrix of shape (m, k).
        constant: Constant offset of shape (m,).
        shape: Output shape, with prod(shape) == m.
    """

    __array_ufunc__ = None

    def __init__(self, indices, coefficients, constant, shape=None):
        self.indices = np.asarray(indices, dtype=np.int64).ravel()
        self.coefficients = np.atleast_2d(np.asarray(coefficients, dtype=float))
        self.constant = np.asarray(constant, dtype=float).ravel()
        if shape is None:
            shape = self.constant.shape
        self.shape = tuple(shape)
        if self.coefficients.shape != (self.constant.size, self.indices.size):
            raise ValueError(
                f"coefficients must have shape "
                f"({self.constant.size}, {self.indices.size}), "
                f"got {self.coefficients.shape}"
            )
        if int(np.prod(self.shape, dtype=np.int64)) != self.constant.size:
            raise ValueError(
                f"shape {self.shape} does not match {self.constant.size} outputs"
            )

    @property
    def size(self) -> int:
        return self.constant.size

    def evaluate(self, x) -> np.ndarray:
        """Evaluates the expression at the flat decision vector x."""
        x = np.asarray(x, dtype=float)
        value = self.coefficients @ x[self.indices] + self.constant
        return value.reshape(self.shape)

    def __neg__(self) -> 'AffineExpression':
        return AffineExpression(
            self.indices, -self.coefficients, -self.constant, self.shape
        )

    def __add__(self, other) -> 'AffineExpression':
        if isinstance(other, DecisionVariables):
            other = other.to_expression()
        if isinstance(other, AffineExpression):
            if other.size != self.size:
                raise ValueError(
                    f"cannot add expressions of sizes {self.size} and {other.size}"
                )
            return AffineExpression(
                np.concatenate([self.indices, other.indices]),
                np.hstack([self.coefficients, other.coefficients]),
                self.constant + other.constant,
                self.shape,
            )
        offset = np.broadcast_to(np.asarray(other, dtype=float), self.shape)
        return AffineExpression(
            self.indices, self.coefficients,
            self.constant + offset.ravel(), self.shape,
        )

    __radd__ = __add__

    def __sub__(self, other) -> 'AffineExpression':
        if isinstance(other, (DecisionVariables, AffineExpression)):
            return self + (-other)
        return self + (-np.asarray(other, dtype=float))

    def __rsub__(self, other) -> 'AffineExpression':
        return (-self) + other

    def __mul__(self, other) -> 'AffineExpression':
        if isinstance(other, (DecisionVariables, AffineExpression)):
            raise TypeError("product of two affine expressions is not affine")
        scale = np.broadcast_to(np.asarray(other, dtype=float), self.shape).ravel()
        return AffineExpression(
            self.indices, scale[:, None] * self.coefficients,
            scale * self.constant, self.shape,
        )

    __rmul__ = __mul__

    def __rmatmul__(self, matrix) -> 'AffineExpression':
        if len(self.shape) != 1:
            raise ValueError("matrix products require a 1-D expression")
        matrix = np.atleast_2d(np.asarray(matrix, dtype=float))
        return AffineExpression(
            self.indices, matrix @ self.coefficients,
            matrix @ self.constant, (matrix.shape[0],),
        )

    def sum(self) -> 'AffineExpression':
        """Returns the scalar sum of all entries."""
        return AffineExpression(
            self.indices, self.coefficients.sum(axis=0, keepdims=True),
            [self.constant.sum()], (),
        )

    def __repr__(self) -> str:
        return (
            f'AffineExpression(shape={self.shape}, '
            f'num_variables={self.indices.size})'
        )


Expression = Union[DecisionVariables, AffineExpression]


def concatenate_variables(
    variables: Sequence[DecisionVariables],
) -> DecisionVariables:
    """Concatenates blocks into one flat block (column-major per block)."""
    if not variables:
        return DecisionVariables(np.zeros(0, dtype=np.int64))
    return DecisionVariables(
        np.concatenate([np.ravel(v.indices, order='F') for v in variables])
    )
