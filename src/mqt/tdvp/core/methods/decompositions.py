# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Tensor Network Decompositions.

This module implements the left and right moving QR decompositions used for canonicalization and the
truncating two-site decomposition used by the TDVP sweep. A two-site tensor is split either by a singular
value decomposition or, when a perturbation term is supplied, by diagonalizing the (perturbed) reduced
density matrix of the half that keeps the orthogonality property.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ..data_structures.networks import MPS


class Spectrum:
    """Retained spectrum of a bond decomposition.

    Attributes:
        eigenvalues: Retained weights in descending order (squared singular values or density matrix
            eigenvalues), normalized to sum to one.
        truncation_error: Discarded weight relative to the total weight.
    """

    def __init__(self, eigenvalues: NDArray[np.float64], truncation_error: float) -> None:
        """Initializes a Spectrum.

        Args:
            eigenvalues: Retained weights in descending order.
            truncation_error: Discarded relative weight.
        """
        self.eigenvalues = np.asarray(eigenvalues, dtype=np.float64)
        self.truncation_error = float(truncation_error)

    @property
    def singular_values(self) -> NDArray[np.float64]:
        """Singular values corresponding to the retained weights."""
        return np.sqrt(self.eigenvalues)

    def __len__(self) -> int:
        """Number of retained values, i.e. the new bond dimension."""
        return len(self.eigenvalues)

    def __repr__(self) -> str:
        """Short representation with bond dimension and truncation error."""
        return f"Spectrum(dim={len(self)}, truncation_error={self.truncation_error:.3e})"


def right_qr(mps_tensor: NDArray[np.complex128]) -> tuple[NDArray[np.complex128], NDArray[np.complex128]]:
    """Right QR.

    Performs the QR decomposition of an MPS tensor moving to the right.

    Args:
        mps_tensor: The tensor to be decomposed.

    Returns:
        q_tensor: The Q tensor with the left virtual leg and the physical
            leg (phys,left,new).
        r_mat: The R matrix with the right virtual leg (new,right).
    """
    old_shape = mps_tensor.shape
    qr_shape = (old_shape[0] * old_shape[1], old_shape[2])
    mps_tensor = mps_tensor.reshape(qr_shape)
    q_mat, r_mat = np.linalg.qr(mps_tensor)
    new_shape = (old_shape[0], old_shape[1], -1)
    q_tensor = q_mat.reshape(new_shape)
    return q_tensor, r_mat


def left_qr(mps_tensor: NDArray[np.complex128]) -> tuple[NDArray[np.complex128], NDArray[np.complex128]]:
    """Left QR.

    Performs the QR decomposition of an MPS tensor moving to the left.

    Args:
        mps_tensor: The tensor to be decomposed.

    Returns:
        q_tensor: The Q tensor with the physical leg and the right virtual
            leg (phys,new,right).
        r_mat: The R matrix with the left virtual leg (left,new).

    """
    old_shape = mps_tensor.shape
    mps_tensor = mps_tensor.transpose(0, 2, 1)
    qr_shape = (old_shape[0] * old_shape[2], old_shape[1])
    mps_tensor = mps_tensor.reshape(qr_shape)
    q_mat, r_mat = np.linalg.qr(mps_tensor)
    q_tensor = q_mat.reshape((old_shape[0], old_shape[2], -1))
    q_tensor = q_tensor.transpose(0, 2, 1)
    r_mat = r_mat.T
    return q_tensor, r_mat


def truncation_index(
    probabilities: NDArray[np.float64],
    max_bond_dim: int,
    min_bond_dim: int = 1,
    cutoff: float = 0.0,
) -> tuple[int, float]:
    """Decide how many weights of a descending spectrum to keep.

    The smallest weights are discarded as long as the accumulated discarded weight, relative to the total,
    stays below or equal to ``cutoff``. ``max_bond_dim`` is always enforced, also over
    ``min_bond_dim``. Otherwise at least ``min(min_bond_dim, len(probabilities))`` (but never fewer than one)
    values are kept.

    Args:
        probabilities: Non-negative weights sorted in descending order.
        max_bond_dim: Maximum number of kept values.
        min_bond_dim: Minimum number of kept values.
        cutoff: Maximum discarded relative weight.

    Returns:
        tuple[int, float]: The number of kept values and the discarded relative weight.
    """
    total = float(np.sum(probabilities))
    if total <= 0.0:
        return 1, 0.0
    weights = np.asarray(probabilities, dtype=np.float64) / total

    keep = len(weights)
    floor = max(1, min(min_bond_dim, max_bond_dim, keep))
    discarded = 0.0
    while keep > floor and (keep > max_bond_dim or discarded + weights[keep - 1] <= cutoff):
        discarded += weights[keep - 1]
        keep -= 1
    return keep, discarded


def _group_two_site_tensor(
    theta: NDArray[np.complex128], physical_dimensions: tuple[int, int]
) -> tuple[NDArray[np.complex128], tuple[int, int, int, int]]:
    """Reshape a merged tensor (d0*d1, D0, D2) into the matrix (d0*D0) x (d1*D2).

    Args:
        theta: Two-site tensor with a composite physical index.
        physical_dimensions: The physical dimensions (d0, d1).

    Returns:
        The matrix and the shape (d0, D0, d1, D2).

    Raises:
        ValueError: If the physical dimension of theta is not d0*d1.
    """
    d0, d1 = physical_dimensions
    if theta.ndim != 3 or theta.shape[0] != d0 * d1:
        msg = "The first dimension of the tensor must be a combination of the given physical dimensions."
        raise ValueError(msg)
    tensor = theta.reshape(d0, d1, theta.shape[1], theta.shape[2]).transpose((0, 2, 1, 3))
    shape = tensor.shape
    return tensor.reshape(shape[0] * shape[1], shape[2] * shape[3]), shape


def split_two_site_tensor(
    theta: NDArray[np.complex128],
    physical_dimensions: tuple[int, int],
    *,
    max_bond_dim: int,
    min_bond_dim: int = 1,
    cutoff: float = 0.0,
    perturbation: NDArray[np.complex128] | None = None,
    ortho: str = "left",
    normalize: bool = True,
    which_decomp: str | None = None,
    svd_alg: str | None = None,
) -> tuple[NDArray[np.complex128], NDArray[np.complex128], Spectrum]:
    """Split a two-site tensor into two truncated one-site tensors.

    The input has shape (d0*d1, D0, D2). The result is a left tensor (d0, D0, k) and a right tensor
    (d1, k, D2). With ``ortho="left"`` the left tensor is left-orthonormal and the right tensor carries the
    weights, with ``ortho="right"`` the roles are exchanged.

    Without a perturbation the split is a truncated SVD. With a perturbation (or ``which_decomp="eigen"``)
    the reduced density matrix on the orthonormal side is diagonalized after the perturbation has been
    added, which lets the new basis include directions outside the range of theta.

    Args:
        theta: Two-site tensor of shape (d0*d1, D0, D2).
        physical_dimensions: The physical dimensions (d0, d1) of the two sites.
        max_bond_dim: Maximum bond dimension after truncation.
        min_bond_dim: Minimum bond dimension after truncation.
        cutoff: Maximum discarded relative weight.
        perturbation: Hermitian matrix added to the reduced density matrix, of shape (d0*D0, d0*D0) for
            ``ortho="left"`` or (d1*D2, d1*D2) for ``ortho="right"``.
        ortho: Which tensor is left orthonormal ("left") or right orthonormal ("right").
        normalize: Rescale the retained weights to unit norm.
        which_decomp: None or "svd" for a singular value decomposition, "eigen" for the density matrix
            decomposition.
        svd_alg: LAPACK driver of the SVD, "gesdd" or "gesvd". Default is None (numpy's gesdd).

    Returns:
        tuple: The left tensor, the right tensor and the retained Spectrum.

    Raises:
        ValueError: If ortho, which_decomp or svd_alg is invalid.
    """
    if ortho not in {"left", "right"}:
        msg = "ortho parameter must be left or right."
        raise ValueError(msg)
    if which_decomp not in {None, "svd", "eigen"}:
        msg = "which_decomp parameter must be None, svd, or eigen."
        raise ValueError(msg)
    if svd_alg not in {None, "gesdd", "gesvd"}:
        msg = "svd_alg parameter must be None, gesdd, or gesvd."
        raise ValueError(msg)

    theta_mat, shape = _group_two_site_tensor(theta, physical_dimensions)
    d0, left_dim, d1, right_dim = shape

    if perturbation is None and which_decomp != "eigen":
        if svd_alg is None:
            u_mat, s_vec, v_mat = np.linalg.svd(theta_mat, full_matrices=False)
        else:
            u_mat, s_vec, v_mat = scipy.linalg.svd(theta_mat, full_matrices=False, lapack_driver=svd_alg)
        keep, truncation_error = truncation_index(s_vec**2, max_bond_dim, min_bond_dim, cutoff)
        u_mat = u_mat[:, :keep]
        s_vec = s_vec[:keep]
        v_mat = v_mat[:keep, :]
        if normalize:
            norm = np.linalg.norm(s_vec)
            if norm > 0:
                s_vec = s_vec / norm
        if ortho == "left":
            left_mat, right_mat = u_mat, s_vec[:, None] * v_mat
        else:
            left_mat, right_mat = u_mat * s_vec, v_mat
        weights = s_vec**2
    else:
        if ortho == "left":
            rho = theta_mat @ theta_mat.conj().T
        else:
            rho = theta_mat.conj().T @ theta_mat
        if perturbation is not None:
            rho = rho + perturbation
        rho = 0.5 * (rho + rho.conj().T)
        eigenvalues, eigenvectors = np.linalg.eigh(rho)
        # eigh sorts ascending
        eigenvalues = np.clip(eigenvalues[::-1], 0.0, None)
        eigenvectors = eigenvectors[:, ::-1]
        keep, truncation_error = truncation_index(eigenvalues, max_bond_dim, min_bond_dim, cutoff)
        basis = eigenvectors[:, :keep]
        if ortho == "left":
            left_mat = basis
            right_mat = basis.conj().T @ theta_mat
            carrier = right_mat
        else:
            right_mat = basis.conj().T
            left_mat = theta_mat @ basis
            carrier = left_mat
        if normalize:
            norm = np.linalg.norm(carrier)
            if norm > 0:
                carrier /= norm
        weights = np.linalg.svd(carrier, compute_uv=False) ** 2

    left_tensor = left_mat.reshape((d0, left_dim, keep))
    right_tensor = right_mat.reshape((keep, d1, right_dim)).transpose((1, 0, 2))

    total = np.sum(weights)
    eigenvalues = weights / total if total > 0 else weights
    return left_tensor, right_tensor, Spectrum(eigenvalues, truncation_error)


def replace_bond(
    state: MPS,
    bond: int,
    theta: NDArray[np.complex128],
    *,
    max_bond_dim: int,
    min_bond_dim: int = 1,
    cutoff: float = 0.0,
    perturbation: NDArray[np.complex128] | None = None,
    ortho: str = "left",
    normalize: bool = True,
    which_decomp: str | None = None,
    svd_alg: str | None = None,
) -> Spectrum:
    """Factorize a two-site tensor and write it back into the MPS at sites bond and bond + 1.

    The orthogonality center of the state ends up at ``bond + 1`` for ``ortho="left"`` and at ``bond``
    for ``ortho="right"``.

    Args:
        state: The MPS to update in place.
        bond: The bond between the sites ``bond`` and ``bond + 1``.
        theta: Two-site tensor of shape (d0*d1, D0, D2).
        max_bond_dim: Maximum bond dimension after truncation.
        min_bond_dim: Minimum bond dimension after truncation.
        cutoff: Maximum discarded relative weight.
        perturbation: Optional density matrix perturbation, see split_two_site_tensor.
        ortho: "left" or "right".
        normalize: Rescale the retained weights to unit norm.
        which_decomp: None, "svd" or "eigen".
        svd_alg: None, "gesdd" or "gesvd".

    Returns:
        Spectrum: The retained spectrum and the truncation error.
    """
    physical_dimensions = (state.physical_dimensions[bond], state.physical_dimensions[bond + 1])
    left_tensor, right_tensor, spectrum = split_two_site_tensor(
        theta,
        physical_dimensions,
        max_bond_dim=max_bond_dim,
        min_bond_dim=min_bond_dim,
        cutoff=cutoff,
        perturbation=perturbation,
        ortho=ortho,
        normalize=normalize,
        which_decomp=which_decomp,
        svd_alg=svd_alg,
    )
    state.tensors[bond] = left_tensor
    state.tensors[bond + 1] = right_tensor
    state.orthogonality_center = bond + 1 if ortho == "left" else bond
    return spectrum
