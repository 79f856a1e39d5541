# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Krylov subspace methods for the action of a matrix exponential.

This module approximates ``exp(t * A) v`` for a matrix-free linear operator A, as required by the local
propagation steps of TDVP. The Krylov basis is built with the Arnoldi iteration for general operators
or the Lanczos iteration for Hermitian ones. exponentiate estimates the error of the Krylov
approximation and splits the time step into smaller substeps when the estimate exceeds the tolerance.

Reference:
    M. Hochbruck and C. Lubich,
    On Krylov subspace approximations to the matrix exponential operator,
    SIAM J. Numer. Anal. 34, 1911 (1997)
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from scipy.linalg import eigh_tridiagonal, expm

from ..errors import ConvergenceWarning

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Maximum number of step halvings within one Krylov subspace.
_MAX_HALVINGS = 30


class KrylovInfo(NamedTuple):
    """Convergence information of exponentiate.

    Attributes:
        converged: True if every accepted substep met the tolerance.
        residual: Largest relative error estimate of the accepted substeps.
        iterations: Number of Krylov subspaces built.
        substeps: Number of accepted substeps.
    """

    converged: bool
    residual: float
    iterations: int
    substeps: int


def _lanczos_iteration(
    matrix_free_operator: Callable[[NDArray[np.complex128]], NDArray[np.complex128]],
    vstart: NDArray[np.complex128],
    numiter: int,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.complex128]]:
    """Perform a "matrix free" Lanczos iteration.

    Args:
        matrix_free_operator: A function that computes the action of a Hermitian matrix on a vector.
        vstart: The starting vector for the iteration.
        numiter: The maximum number of Lanczos iterations.

    Returns:
        tuple: A tuple containing
            - alpha: The diagonal real entries of the tridiagonal matrix.
            - beta: The off-diagonal real entries of the tridiagonal matrix.
            - V: A `len(vstart) x numiter` matrix containing the orthonormal Lanczos vectors.
    """
    nrmv = np.linalg.norm(vstart)
    assert nrmv > 0
    vstart = vstart / nrmv

    alpha = np.zeros(numiter)
    beta = np.zeros(numiter - 1)

    lanczos_mat = np.zeros((numiter, len(vstart)), dtype=complex)
    lanczos_mat[0] = vstart

    for j in range(numiter - 1):
        w = np.array(matrix_free_operator(lanczos_mat[j]), dtype=complex)
        alpha[j] = np.vdot(w, lanczos_mat[j]).real
        w -= alpha[j] * lanczos_mat[j] + (beta[j - 1] * lanczos_mat[j - 1] if j > 0 else 0)
        beta[j] = np.linalg.norm(w)
        # Invariant subspace found, premature end of iteration
        if beta[j] < 100 * len(vstart) * np.finfo(float).eps:
            numiter = j + 1
            return alpha[:numiter], beta[: numiter - 1], lanczos_mat[:numiter, :].T
        lanczos_mat[j + 1] = w / beta[j]

    # complete final iteration
    j = numiter - 1
    w = np.array(matrix_free_operator(lanczos_mat[j]), dtype=complex)
    alpha[j] = np.vdot(w, lanczos_mat[j]).real
    return alpha, beta, lanczos_mat.T


def _arnoldi_iteration(
    matrix_free_operator: Callable[[NDArray[np.complex128]], NDArray[np.complex128]],
    vstart: NDArray[np.complex128],
    numiter: int,
) -> tuple[NDArray[np.complex128], NDArray[np.complex128], float]:
    """Perform a "matrix free" Arnoldi iteration.

    Args:
        matrix_free_operator: A function that computes the action of a matrix on a vector.
        vstart: The starting vector for the iteration.
        numiter: The maximum number of Arnoldi iterations.

    Returns:
        tuple: A tuple containing
            - H: The `k x k` upper Hessenberg matrix with k <= numiter.
            - V: The `len(vstart) x k` matrix of orthonormal Arnoldi vectors.
            - h_next: The norm of the residual vector, zero if an invariant subspace was found.
    """
    nrmv = np.linalg.norm(vstart)
    assert nrmv > 0
    dimension = len(vstart)

    hessenberg = np.zeros((numiter, numiter), dtype=complex)
    arnoldi_mat = np.zeros((numiter, dimension), dtype=complex)
    arnoldi_mat[0] = vstart / nrmv

    for j in range(numiter):
        w = np.array(matrix_free_operator(arnoldi_mat[j]), dtype=complex)
        # modified Gram-Schmidt, twice for numerical stability
        for _ in range(2):
            for k in range(j + 1):
                overlap = np.vdot(arnoldi_mat[k], w)
                hessenberg[k, j] += overlap
                w -= overlap * arnoldi_mat[k]
        h_next = float(np.linalg.norm(w))
        if h_next < 100 * dimension * np.finfo(float).eps:
            return hessenberg[: j + 1, : j + 1], arnoldi_mat[: j + 1].T, 0.0
        if j + 1 < numiter:
            hessenberg[j + 1, j] = h_next
            arnoldi_mat[j + 1] = w / h_next

    return hessenberg, arnoldi_mat.T, h_next


def _krylov_basis(
    matrix_free_operator: Callable[[NDArray[np.complex128]], NDArray[np.complex128]],
    vstart: NDArray[np.complex128],
    numiter: int,
    *,
    hermitian: bool,
) -> tuple[NDArray[np.complex128], NDArray[np.complex128], float]:
    """Krylov basis, projected operator and residual norm of the Arnoldi or Lanczos process.

    Returns:
        tuple: The projected `k x k` operator, the `len(vstart) x k` basis and the residual norm.
    """
    if not hermitian:
        return _arnoldi_iteration(matrix_free_operator, vstart, numiter)

    # One extra step provides the residual norm of the k-dimensional subspace
    alpha, beta, basis = _lanczos_iteration(matrix_free_operator, vstart, numiter + 1)
    if len(alpha) <= numiter:
        k, h_next = len(alpha), 0.0
    else:
        k, h_next = numiter, float(beta[numiter - 1])
    projected = np.diag(alpha[:k]).astype(complex) + np.diag(beta[: k - 1], 1) + np.diag(beta[: k - 1], -1)
    return projected, basis[:, :k], h_next


def _exp_first_column(projected: NDArray[np.complex128], tau: complex, *, hermitian: bool) -> NDArray[np.complex128]:
    """First column of exp(tau * H) for the small projected operator H.

    Returns:
        NDArray[np.complex128]: The coefficient vector in the Krylov basis.
    """
    if hermitian:
        diagonal = np.real(np.diag(projected))
        off_diagonal = np.real(np.diag(projected, 1))
        w_hess, u_hess = eigh_tridiagonal(diagonal, off_diagonal)
        return u_hess @ (np.exp(tau * w_hess) * u_hess[0])
    return expm(tau * projected)[:, 0]


def expm_krylov(
    matrix_free_operator: Callable[[NDArray[np.complex128]], NDArray[np.complex128]],
    vstart: NDArray[np.complex128],
    dt: float,
    numiter: int,
    *,
    hermitian: bool = True,
) -> NDArray[np.complex128]:
    """Compute the Krylov subspace approximation of ``exp(-1j * dt * A) v`` in a fixed subspace.

    Args:
        matrix_free_operator: A function that applies A to a vector.
        vstart: The input vector v.
        dt: The time step.
        numiter: The number of Krylov iterations.
        hermitian: Use the Lanczos iteration for Hermitian A, otherwise the Arnoldi iteration.

    Returns:
        NDArray[np.complex128]: The approximation of exp(-1j * dt * A) v.
    """
    nrmv = np.linalg.norm(vstart)
    if hermitian:
        alpha, beta, lanczos_mat = _lanczos_iteration(
            matrix_free_operator, np.array(vstart, dtype=complex), numiter
        )
        w_hess, u_hess = eigh_tridiagonal(alpha, beta)
        return lanczos_mat @ (u_hess @ (nrmv * np.exp(-1j * dt * w_hess) * u_hess[0]))

    hessenberg, arnoldi_mat, _ = _arnoldi_iteration(matrix_free_operator, np.array(vstart, dtype=complex), numiter)
    return arnoldi_mat @ (nrmv * expm(-1j * dt * hessenberg)[:, 0])


def exponentiate(
    operator: Callable[[NDArray[np.complex128]], NDArray[np.complex128]],
    t: complex,
    vector: NDArray[np.complex128],
    *,
    tol: float = 1e-14,
    krylov_dim: int = 20,
    max_iter: int = 1,
    verbosity: int = 0,
    hermitian: bool = False,
) -> tuple[NDArray[np.complex128], KrylovInfo]:
    """Approximate ``exp(t * A) v`` with an adaptive Krylov method.

    A Krylov subspace of dimension ``min(krylov_dim, v.size)`` is built from the current vector. The error
    of propagating over the remaining time is estimated from the residual norm of the Krylov process and
    the last component of the small exponential. While it exceeds ``tol`` (relative to the vector norm),
    the substep is halved within the same subspace. Each accepted substep starts a new subspace. The last
    of the ``max_iter`` subspaces always propagates over the whole remaining time, and the result is then
    flagged as not converged if its error estimate exceeds the tolerance.

    Args:
        operator: Matrix-free action of A on a flat vector.
        t: The (complex) time, the exponent is t * A.
        vector: The vector v, of any shape. It is flattened before A is applied.
        tol: Relative error tolerance. Default is 1e-14.
        krylov_dim: Maximum Krylov subspace dimension. Default is 20.
        max_iter: Number of Krylov subspaces that may be built. Default is 1.
        verbosity: 1 emits a ConvergenceWarning on non-convergence. Default is 0.
        hermitian: Use the Lanczos iteration for Hermitian A. Default is False.

    Returns:
        tuple: The approximation of exp(t * A) v with the shape of ``vector``, and a KrylovInfo.
    """
    shape = np.shape(vector)
    w = np.array(vector, dtype=complex).ravel()
    beta = float(np.linalg.norm(w))
    if t == 0 or beta == 0.0:
        return w.reshape(shape), KrylovInfo(converged=True, residual=0.0, iterations=0, substeps=0)

    numiter = max(1, min(krylov_dim, w.size))
    remaining = 1.0
    iterations = 0
    substeps = 0
    residual = 0.0
    converged = True
    while remaining > 0.0:
        iterations += 1
        last = iterations >= max_iter
        projected, basis, h_next = _krylov_basis(operator, w, numiter, hermitian=hermitian)

        step = remaining
        for halvings in range(_MAX_HALVINGS + 1):
            coefficients = _exp_first_column(projected, step * t, hermitian=hermitian)
            error = abs(h_next * coefficients[-1])
            if error <= tol or last or halvings == _MAX_HALVINGS:
                break
            step /= 2

        if error > tol:
            converged = False
        residual = max(residual, error)
        w = basis @ (beta * coefficients)
        beta = float(np.linalg.norm(w))
        remaining = 0.0 if last else remaining - step
        substeps += 1
        if beta == 0.0:
            break

    info = KrylovInfo(converged=converged, residual=residual, iterations=iterations, substeps=substeps)
    if not converged:
        logger.debug("Krylov exponentiation did not converge: %s", info)
        if verbosity >= 1:
            warnings.warn(
                f"Krylov exponentiation did not converge: residual {residual:.3e} > tol {tol:.3e}",
                ConvergenceWarning,
                stacklevel=2,
            )
    return w.reshape(shape), info
