# Copyright (c) 2023 - 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Tests for decompositions.

This module tests the left and right QR decompositions, the truncation rule and the truncating two-site
decomposition by SVD and by density matrix diagonalization, with and without perturbation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from mqt.tdvp.core.data_structures.networks import MPS
from mqt.tdvp.core.methods.decompositions import (
    Spectrum,
    left_qr,
    replace_bond,
    right_qr,
    split_two_site_tensor,
    truncation_index,
)
from mqt.tdvp.core.methods.effective_operator import merge_mps_tensors

if TYPE_CHECKING:
    from numpy.typing import NDArray


def crandn(
    size: int | tuple[int, ...], *args: int, seed: np.random.Generator | int | None = None
) -> NDArray[np.complex128]:
    """Draw random samples from the standard complex normal distribution.

    Args:
        size (int |Tuple[int,...]): The size/shape of the output array.
        *args (int): Additional dimensions for the output array.
        seed (Generator | int): The seed for the random number generator.

    Returns:
        NDArray[np.complex128]: The array of random complex numbers.
    """
    if isinstance(size, int) and len(args) > 0:
        size = (size, *list(args))
    elif isinstance(size, int):
        size = (size,)
    rng = np.random.default_rng(seed)
    # 1 / sqrt(2) is a normalization factor
    return np.asarray((rng.standard_normal(size) + 1j * rng.standard_normal(size)) / np.sqrt(2), dtype=np.complex128)


def theta_with_spectrum(
    singular_values: NDArray[np.float64], d: int = 2, left_dim: int = 3, right_dim: int = 3, seed: int = 0
) -> NDArray[np.complex128]:
    """Two-site tensor (d*d, left_dim, right_dim) with the given singular values across its bond.

    Returns:
        The merged tensor.
    """
    rows = d * left_dim
    cols = d * right_dim
    k = len(singular_values)
    u_mat, _ = np.linalg.qr(crandn(rows, k, seed=seed))
    v_mat, _ = np.linalg.qr(crandn(cols, k, seed=seed + 1))
    mat = (u_mat * singular_values) @ v_mat.conj().T
    tensor = mat.reshape(d, left_dim, d, right_dim).transpose((0, 2, 1, 3))
    return tensor.reshape(d * d, left_dim, right_dim)


def test_right_qr() -> None:
    """Tests the right qr decomposition.

    Ensures that it produces tensors of the correct shape and a unitary tensor.
    Also checks that the decomposition is actually the original tensor.
    """
    shape = (2, 3, 4)
    tensor = crandn(shape)
    q_tensor, r_matrix = right_qr(tensor)
    assert q_tensor.ndim == 3
    assert r_matrix.ndim == 2
    assert q_tensor.shape[0] == shape[0]
    assert q_tensor.shape[1] == shape[1]
    assert r_matrix.shape[1] == shape[2]
    assert q_tensor.shape[2] == r_matrix.shape[0]
    # Check that q_tensor is unitary
    iden = np.eye(q_tensor.shape[2])
    q_matrix = q_tensor.reshape(q_tensor.shape[0] * q_tensor.shape[1], -1)
    assert np.allclose(q_matrix.conj().T @ q_matrix, iden)
    # Check that qr = tensor
    contr = np.tensordot(q_tensor, r_matrix, axes=(2, 0))
    assert np.allclose(contr, tensor)


def test_left_qr() -> None:
    """Tests the left qr decomposition.

    Ensures that it produces tensors of the correct shape and a unitary tensor.
    Also checks that the decomposition is actually the original tensor.
    """
    shape = (2, 3, 4)
    tensor = crandn(shape)
    q_tensor, r_matrix = left_qr(tensor)
    assert q_tensor.ndim == 3
    assert r_matrix.ndim == 2
    assert q_tensor.shape[0] == shape[0]
    assert q_tensor.shape[2] == shape[2]
    assert r_matrix.shape[0] == shape[1]
    assert q_tensor.shape[1] == r_matrix.shape[1]
    # Check that q_tensor is unitary
    iden = np.eye(q_tensor.shape[1])
    q_matrix = q_tensor.transpose(0, 2, 1).reshape(q_tensor.shape[0] * q_tensor.shape[2], -1)
    assert np.allclose(q_matrix.conj().T @ q_matrix, iden)
    # Check that rq = tensor
    contr = np.tensordot(r_matrix, q_tensor, axes=(1, 1)).transpose(1, 0, 2)
    assert np.allclose(contr, tensor)


def test_truncation_index_max_bond_dim() -> None:
    """max_bond_dim is enforced and the discarded weight is reported."""
    probabilities = np.array([0.5, 0.3, 0.15, 0.05])
    keep, discarded = truncation_index(probabilities, max_bond_dim=2)
    assert keep == 2
    np.testing.assert_allclose(discarded, 0.2)


def test_truncation_index_cutoff() -> None:
    """Values are discarded while the accumulated weight stays within the cutoff."""
    probabilities = np.array([0.9, 0.09, 0.009, 0.001])
    keep, discarded = truncation_index(probabilities, max_bond_dim=10, cutoff=0.005)
    assert keep == 3
    np.testing.assert_allclose(discarded, 0.001)

    keep, discarded = truncation_index(probabilities, max_bond_dim=10, cutoff=0.02)
    assert keep == 2
    np.testing.assert_allclose(discarded, 0.01)

    keep, discarded = truncation_index(probabilities, max_bond_dim=10, cutoff=0.0)
    assert keep == 4
    assert discarded == 0.0


def test_truncation_index_relative_weights() -> None:
    """The cutoff applies to the weights relative to their total."""
    probabilities = 100 * np.array([0.9, 0.09, 0.009, 0.001])
    keep, discarded = truncation_index(probabilities, max_bond_dim=10, cutoff=0.005)
    assert keep == 3
    np.testing.assert_allclose(discarded, 0.001)


def test_truncation_index_min_bond_dim() -> None:
    """min_bond_dim takes precedence over the cutoff, but not over the spectrum size."""
    probabilities = np.array([1.0, 1e-12, 1e-14])
    keep, _ = truncation_index(probabilities, max_bond_dim=10, min_bond_dim=2, cutoff=1e-8)
    assert keep == 2
    keep, _ = truncation_index(probabilities, max_bond_dim=10, min_bond_dim=5, cutoff=1e-8)
    assert keep == 3
    keep, _ = truncation_index(np.zeros(3), max_bond_dim=10)
    assert keep == 1


def test_truncation_index_max_bond_dim_beats_min_bond_dim() -> None:
    """A min_bond_dim above max_bond_dim does not lift the maximum."""
    keep, discarded = truncation_index(np.array([0.5, 0.3, 0.2]), max_bond_dim=1, min_bond_dim=3)
    assert keep == 1
    np.testing.assert_allclose(discarded, 0.5)

    keep, discarded = truncation_index(np.array([0.5, 0.3, 0.15, 0.05]), max_bond_dim=2, min_bond_dim=4, cutoff=0.5)
    assert keep == 2
    np.testing.assert_allclose(discarded, 0.2)


@pytest.mark.parametrize("svd_alg", ["gesdd", "gesvd"])
def test_split_svd_lapack_driver(svd_alg: str) -> None:
    """Both LAPACK drivers give the same truncated factorization as the default SVD."""
    theta = crandn(4, 3, 2, seed=8)
    theta /= np.linalg.norm(theta)
    left, right, spectrum = split_two_site_tensor(theta, (2, 2), max_bond_dim=100, cutoff=0.0, svd_alg=svd_alg)
    _, _, reference = split_two_site_tensor(theta, (2, 2), max_bond_dim=100, cutoff=0.0)

    np.testing.assert_allclose(merge_mps_tensors(left, right), theta, atol=1e-12)
    np.testing.assert_allclose(spectrum.eigenvalues, reference.eigenvalues, atol=1e-12)


def test_split_rejects_unknown_svd_alg() -> None:
    """Only the gesdd and gesvd drivers are accepted."""
    theta = crandn(4, 1, 1, seed=1)
    with pytest.raises(ValueError, match="svd_alg"):
        split_two_site_tensor(theta, (2, 2), max_bond_dim=4, svd_alg="gesvj")


def test_split_svd_without_truncation() -> None:
    """The SVD split reproduces theta and returns a left-orthonormal left tensor."""
    theta = crandn(4, 3, 2, seed=3)
    theta /= np.linalg.norm(theta)
    left, right, spectrum = split_two_site_tensor(theta, (2, 2), max_bond_dim=100, cutoff=0.0)

    assert left.shape[:2] == (2, 3)
    assert right.shape[0] == 2
    assert right.shape[2] == 2
    assert left.shape[2] == right.shape[1] == len(spectrum)
    np.testing.assert_allclose(merge_mps_tensors(left, right), theta, atol=1e-12)

    left_mat = left.reshape(-1, left.shape[2])
    np.testing.assert_allclose(left_mat.conj().T @ left_mat, np.eye(left.shape[2]), atol=1e-12)
    np.testing.assert_allclose(np.sum(spectrum.eigenvalues), 1.0)
    assert spectrum.truncation_error == 0.0


def test_split_right_orthonormal() -> None:
    """With ortho="right" the right tensor is right-orthonormal."""
    theta = crandn(4, 2, 3, seed=5)
    theta /= np.linalg.norm(theta)
    left, right, _ = split_two_site_tensor(theta, (2, 2), max_bond_dim=100, ortho="right")

    right_mat = right.transpose((1, 0, 2)).reshape(right.shape[1], -1)
    np.testing.assert_allclose(right_mat @ right_mat.conj().T, np.eye(right.shape[1]), atol=1e-12)
    np.testing.assert_allclose(merge_mps_tensors(left, right), theta, atol=1e-12)


@pytest.mark.parametrize("which_decomp", [None, "svd", "eigen"])
def test_split_truncation(which_decomp: str | None) -> None:
    """Truncation keeps the largest weights and reports the discarded one."""
    singular_values = np.sqrt(np.array([0.6, 0.3, 0.099, 0.001]))
    theta = theta_with_spectrum(singular_values)
    _, _, spectrum = split_two_site_tensor(
        theta, (2, 2), max_bond_dim=100, cutoff=0.002, which_decomp=which_decomp
    )
    assert len(spectrum) == 3
    np.testing.assert_allclose(spectrum.truncation_error, 0.001, atol=1e-10)
    np.testing.assert_allclose(spectrum.eigenvalues, np.array([0.6, 0.3, 0.099]) / 0.999, atol=1e-10)
    np.testing.assert_allclose(spectrum.singular_values**2, spectrum.eigenvalues)

    _, _, spectrum = split_two_site_tensor(theta, (2, 2), max_bond_dim=2, which_decomp=which_decomp)
    assert len(spectrum) == 2
    np.testing.assert_allclose(spectrum.truncation_error, 0.1, atol=1e-10)


@pytest.mark.parametrize("ortho", ["left", "right"])
def test_split_normalize(ortho: str) -> None:
    """The retained part is renormalized to unit norm if requested."""
    theta = theta_with_spectrum(np.sqrt(np.array([0.5, 0.3, 0.2])))
    left, right, _ = split_two_site_tensor(theta, (2, 2), max_bond_dim=2, ortho=ortho, normalize=True)
    np.testing.assert_allclose(np.linalg.norm(merge_mps_tensors(left, right)), 1.0)

    left, right, _ = split_two_site_tensor(theta, (2, 2), max_bond_dim=2, ortho=ortho, normalize=False)
    np.testing.assert_allclose(np.linalg.norm(merge_mps_tensors(left, right)), np.sqrt(0.8))


@pytest.mark.parametrize("ortho", ["left", "right"])
def test_split_eigen_matches_svd(ortho: str) -> None:
    """Without perturbation the density matrix decomposition reproduces theta like the SVD."""
    theta = crandn(4, 3, 3, seed=7)
    theta /= np.linalg.norm(theta)
    left, right, spectrum = split_two_site_tensor(theta, (2, 2), max_bond_dim=100, ortho=ortho, which_decomp="eigen")
    _, _, svd_spectrum = split_two_site_tensor(theta, (2, 2), max_bond_dim=100, ortho=ortho)

    np.testing.assert_allclose(merge_mps_tensors(left, right), theta, atol=1e-10)
    np.testing.assert_allclose(spectrum.eigenvalues, svd_spectrum.eigenvalues, atol=1e-10)


def test_split_perturbation_expands_basis() -> None:
    """A perturbation adds basis vectors outside the range of theta."""
    # Product state across the bond, rank one.
    theta = np.zeros((4, 1, 1), dtype=complex)
    theta[0, 0, 0] = 1.0

    _, _, spectrum = split_two_site_tensor(theta, (2, 2), max_bond_dim=2, cutoff=1e-12)
    assert len(spectrum) == 1

    perturbation = 1e-3 * np.eye(2)
    left, right, spectrum = split_two_site_tensor(
        theta, (2, 2), max_bond_dim=2, cutoff=1e-12, perturbation=perturbation, ortho="left"
    )
    assert left.shape == (2, 1, 2)
    assert right.shape == (2, 2, 1)
    left_mat = left.reshape(-1, 2)
    np.testing.assert_allclose(left_mat.conj().T @ left_mat, np.eye(2), atol=1e-12)
    np.testing.assert_allclose(merge_mps_tensors(left, right), theta, atol=1e-12)


def test_split_invalid_arguments() -> None:
    """Invalid ortho, decomposition or physical dimensions raise a ValueError."""
    theta = crandn(4, 2, 2)
    with pytest.raises(ValueError, match="ortho"):
        split_two_site_tensor(theta, (2, 2), max_bond_dim=4, ortho="up")
    with pytest.raises(ValueError, match="which_decomp"):
        split_two_site_tensor(theta, (2, 2), max_bond_dim=4, which_decomp="qr")
    with pytest.raises(ValueError, match="physical dimensions"):
        split_two_site_tensor(theta, (3, 2), max_bond_dim=4)


@pytest.mark.parametrize(("ortho", "center"), [("left", 2), ("right", 1)])
def test_replace_bond(ortho: str, center: int) -> None:
    """replace_bond writes both tensors and moves the orthogonality center."""
    state = MPS(length=4, state="x+")
    theta = merge_mps_tensors(state.tensors[1], state.tensors[2])
    spectrum = replace_bond(state, 1, theta, max_bond_dim=4, cutoff=1e-12, ortho=ortho)

    assert isinstance(spectrum, Spectrum)
    assert state.orthogonality_center == center
    assert state.tensors[1].shape == (2, 1, 1)
    assert state.tensors[2].shape == (2, 1, 1)
    state.check_if_valid_mps()
    np.testing.assert_allclose(state.norm(), 1.0)
    assert "dim=1" in repr(spectrum)
