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

"""Forward-mode differentiation utilities.

Constraint evaluators in this package map a flat input vector to a flat
output vector. These helpers compute exact Jacobians of such maps with JAX
forward mode, which is efficient when the number of inputs is comparable to
the number of outputs (as for a transcription residual).
"""

from functools import partial
from typing import Callable, Tuple

import jax
import jax.numpy as jnp
from jax import Array


def value_and_jacfwd(fun: Callable) -> Callable:
    """Returns a function computing fun(x) and its forward-mode Jacobian.

    The primal is evaluated once and pushed forward along every column of
    the identity, so Python-side caches inside fun see a single input
    object per call.

    Args:
        fun: Function mapping a 1-D array of size n to a 1-D array of size m.

    Returns:
        Function x -> (fun(x), J) with J of shape (m, n).

    Example:
        >>> f = lambda x: jnp.array([x[0] * x[1], jnp.sin(x[1])])
        >>> y, J = value_and_jacfwd(f)(jnp.array([1.0, 2.0]))
    """
    def value_and_jac(x: Array) -> Tuple[Array, Array]:
        x = jnp.asarray(x)
        pushfwd = partial(jax.jvp, fun, (x,))
        basis = jnp.eye(x.size, dtype=x.dtype)
        y, jac = jax.vmap(pushfwd, out_axes=(None, 1))((basis,))
        return y, jac

    return value_and_jac


def jacfwd(fun: Callable) -> Callable:
    """Forward-mode Jacobian operator for a vector-valued function."""
    value_and_jac = value_and_jacfwd(fun)

    def jac(x: Array) -> Array:
        return value_and_jac(x)[1]

    return jac


def as_float_array(x) -> Array:
    """Converts x to a 1-D floating point JAX array."""
    x = jnp.atleast_1d(jnp.asarray(x))
    if not jnp.issubdtype(x.dtype, jnp.floating):
        x = x.astype(jnp.result_type(float))
    return x
