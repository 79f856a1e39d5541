# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Tests for the effective operators of TDVP.

This module checks the tensor merging helpers, the environment updates and the lazily cached effective
operator against dense reference computations. It also verifies the implicit sum of operators, the
density matrix perturbation and the relocation of the environments to disk.
"""

# ignore non-lowercase variable names for physics notation
# ruff: noqa: N806

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

import numpy as np
import pytest

from mqt.tdvp.core.data_structures.networks import MPO, MPS
from mqt.tdvp.core.methods.effective_operator import (
    EffectiveOperator,
    EffectiveOperatorSum,
    boundary_environment,
    make_effective_operator,
    merge_mpo_tensors,
    merge_mps_tensors,
    update_left_environment,
    update_right_environment,
)
from mqt.tdvp.core.methods.storage import StorageTier

if TYPE_CHECKING:
    from pathlib import Path

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


def random_state(length: int = 4, bond: int = 3) -> MPS:
    """Random normalized MPS with the orthogonality center at site 0.

    Returns:
        MPS: The state.
    """
    tensors = []
    for site in range(length):
        left = 1 if site == 0 else bond
        right = 1 if site == length - 1 else bond
        tensors.append(crandn(2, left, right, seed=site))
    state = MPS(length, tensors=tensors)
    state.normalize()
    return state


def heisenberg(length: int = 4) -> MPO:
    """Heisenberg MPO used throughout the tests.

    Returns:
        MPO: The operator.
    """
    mpo = MPO()
    mpo.init_heisenberg(length, 1.0, 0.7, 0.4, 0.3)
    return mpo


def dense_effective_operator(state: MPS, mpo: MPO, site: int, nsite: int) -> NDArray[np.complex128]:
    """Effective operator of a window as a dense matrix on the flattened local tensor.

    The state must be in canonical form with the orthogonality center inside the window.

    Returns:
        The matrix P^dagger H P, where P embeds the local tensor into the full space.
    """
    H = mpo.to_matrix()
    if nsite == 2:
        local = merge_mps_tensors(state.tensors[site], state.tensors[site + 1])
    else:
        local = state.tensors[site]
    columns = []
    for index in range(local.size):
        unit = np.zeros(local.size, dtype=complex)
        unit[index] = 1.0
        probe = copy.deepcopy(state)
        if nsite == 2:
            d0 = state.tensors[site].shape[0]
            d1 = state.tensors[site + 1].shape[0]
            tensor = unit.reshape(local.shape).reshape(d0, d1, local.shape[1], local.shape[2])
            # Keep the second site as identity on the combined physical index.
            probe.tensors[site] = tensor.transpose((0, 2, 1, 3)).reshape(d0, local.shape[1], d1 * local.shape[2])
            identity = np.eye(d1 * local.shape[2], dtype=complex).reshape(d1 * local.shape[2], d1, local.shape[2])
            probe.tensors[site + 1] = identity.transpose((1, 0, 2))
        else:
            probe.tensors[site] = unit.reshape(local.shape)
        columns.append(probe.to_vec())
    P = np.array(columns).T
    return P.conj().T @ H @ P


def test_merge_mps_tensors() -> None:
    """Merged MPS tensors combine the physical indices with the left one more significant."""
    left = crandn(2, 1, 3, seed=1)
    right = crandn(3, 3, 2, seed=2)
    merged = merge_mps_tensors(left, right)
    assert merged.shape == (6, 1, 2)
    np.testing.assert_allclose(merged[1 * 3 + 2], left[1] @ right[2])


def test_merge_mpo_tensors() -> None:
    """Merging two MPO tensors equals the Kronecker product of the local operators."""
    mpo = heisenberg(2)
    merged = merge_mpo_tensors(mpo.tensors[0], mpo.tensors[1])
    assert merged.shape == (4, 4, 1, 1)
    np.testing.assert_allclose(merged[:, :, 0, 0], mpo.to_matrix())


def test_environments_give_expectation_value() -> None:
    """Contracting the whole chain from either side yields <psi|H|psi>."""
    state = random_state()
    mpo = heisenberg()
    psi = state.to_vec()
    expected = np.vdot(psi, mpo.to_matrix() @ psi)

    left = boundary_environment()
    for site in range(state.length):
        left = update_left_environment(state.tensors[site], state.tensors[site], mpo.tensors[site], left)
    right = boundary_environment()
    for site in reversed(range(state.length)):
        right = update_right_environment(state.tensors[site], state.tensors[site], mpo.tensors[site], right)

    assert left.shape == (1, 1, 1)
    assert right.shape == (1, 1, 1)
    np.testing.assert_allclose(left[0, 0, 0], expected, atol=1e-12)
    np.testing.assert_allclose(right[0, 0, 0], expected, atol=1e-12)


@pytest.mark.parametrize("site", [0, 1, 2])
def test_two_site_apply_matches_dense(site: int) -> None:
    """The two-site effective operator equals the dense projected Hamiltonian."""
    state = random_state()
    mpo = heisenberg()
    state.set_canonical_form(site)
    effective = EffectiveOperator(mpo)
    effective.recenter(state, site, 2)
    assert effective.lpos == site - 1
    assert effective.rpos == site + 2

    theta = merge_mps_tensors(state.tensors[site], state.tensors[site + 1])
    result = effective.apply(theta, site, 2)
    dense = dense_effective_operator(state, mpo, site, 2)

    assert result.shape == theta.shape
    np.testing.assert_allclose(result.ravel(), dense @ theta.ravel(), atol=1e-10)
    np.testing.assert_allclose(dense, dense.conj().T, atol=1e-10)

    matvec = effective.local_operator(site, 2, theta.shape)
    np.testing.assert_allclose(matvec(theta.ravel()), result.ravel())


@pytest.mark.parametrize("site", [0, 2, 3])
def test_one_site_apply_matches_dense(site: int) -> None:
    """The one-site effective operator equals the dense projected Hamiltonian."""
    state = random_state()
    mpo = heisenberg()
    state.set_canonical_form(site)
    effective = EffectiveOperator(mpo)
    effective.recenter(state, site, 1)

    tensor = state.tensors[site]
    result = effective.apply(tensor, site, 1)
    dense = dense_effective_operator(state, mpo, site, 1)
    np.testing.assert_allclose(result.ravel(), dense @ tensor.ravel(), atol=1e-10)


def test_energy_from_effective_operator() -> None:
    """<theta|H_eff|theta> at the orthogonality center is the energy of the state."""
    state = random_state()
    mpo = heisenberg()
    psi = state.to_vec()
    energy = np.vdot(psi, mpo.to_matrix() @ psi)

    state.set_canonical_form(1)
    effective = EffectiveOperator(mpo)
    effective.recenter(state, 1, 2)
    theta = merge_mps_tensors(state.tensors[1], state.tensors[2])
    np.testing.assert_allclose(np.vdot(theta, effective.apply(theta, 1, 2)), energy, atol=1e-10)


def test_recenter_is_lazy() -> None:
    """Moving the window back does not rebuild environments, moving it forward builds the missing ones."""
    state = random_state(length=5)
    effective = EffectiveOperator(heisenberg(5))

    effective.recenter(state, 0, 2)
    assert (effective.lpos, effective.rpos) == (-1, 2)
    right_two = effective.right_environment(2)

    effective.recenter(state, 0, 2)
    assert effective.right_environment(2) is right_two

    effective.recenter(state, 2, 2)
    assert (effective.lpos, effective.rpos) == (1, 4)
    effective.left_environment(0)
    effective.left_environment(1)

    effective.recenter(state, 1, 1)
    assert (effective.lpos, effective.rpos) == (0, 2)

    np.testing.assert_allclose(effective.left_environment(-1), np.ones((1, 1, 1)))
    np.testing.assert_allclose(effective.right_environment(5), np.ones((1, 1, 1)))


def test_apply_requires_current_window() -> None:
    """Applying the operator to a window whose environments are not current raises a ValueError."""
    state = random_state()
    effective = EffectiveOperator(heisenberg())
    effective.recenter(state, 0, 2)
    theta = merge_mps_tensors(state.tensors[1], state.tensors[2])

    with pytest.raises(ValueError, match="not cached"):
        effective.apply(theta, 1, 2)
    with pytest.raises(ValueError, match="not supported"):
        effective.check_window(0, 3)
    with pytest.raises(ValueError, match="not cached"):
        effective.local_operator(2, 2, theta.shape)


def test_operator_sum_matches_summed_mpo() -> None:
    """The implicit sum of two MPOs acts like the MPO of their sum."""
    state = random_state()
    zz = MPO()
    zz.init_ising(4, J=1.0, g=0.0)
    x = MPO()
    x.init_ising(4, J=0.0, g=0.6)
    total = MPO()
    total.init_ising(4, J=1.0, g=0.6)

    summed = make_effective_operator([zz, x])
    single = make_effective_operator(total)
    assert isinstance(summed, EffectiveOperatorSum)
    assert isinstance(single, EffectiveOperator)

    state.set_canonical_form(1)
    summed.recenter(state, 1, 2)
    single.recenter(state, 1, 2)
    assert (summed.lpos, summed.rpos) == (0, 3)
    theta = merge_mps_tensors(state.tensors[1], state.tensors[2])

    np.testing.assert_allclose(summed.apply(theta, 1, 2), single.apply(theta, 1, 2), atol=1e-12)
    matvec = summed.local_operator(1, 2, theta.shape)
    np.testing.assert_allclose(matvec(theta.ravel()), single.apply(theta, 1, 2).ravel(), atol=1e-12)
    summed.close()
    assert (summed.lpos, summed.rpos) == (-1, 4)


@pytest.mark.parametrize("ortho", ["left", "right"])
def test_noise_term_is_positive_semidefinite(ortho: str) -> None:
    """The perturbation is Hermitian, positive semi-definite and of the shape of the reduced density matrix."""
    state = random_state()
    effective = EffectiveOperator(heisenberg())
    state.set_canonical_form(1)
    effective.recenter(state, 1, 2)
    theta = merge_mps_tensors(state.tensors[1], state.tensors[2])

    term = effective.noise_term(theta, 1, ortho)
    dim = 2 * (theta.shape[1] if ortho == "left" else theta.shape[2])
    assert term.shape == (dim, dim)
    np.testing.assert_allclose(term, term.conj().T, atol=1e-12)
    assert np.min(np.linalg.eigvalsh(term)) > -1e-10

    with pytest.raises(ValueError, match="ortho"):
        effective.noise_term(theta, 1, "up")


def test_noise_term_of_sum() -> None:
    """The perturbation of a sum is the sum of the perturbations."""
    state = random_state()
    zz = MPO()
    zz.init_ising(4, J=1.0, g=0.0)
    x = MPO()
    x.init_ising(4, J=0.0, g=0.6)
    state.set_canonical_form(0)

    summed = make_effective_operator([zz, x])
    parts = [EffectiveOperator(zz), EffectiveOperator(x)]
    summed.recenter(state, 0, 2)
    for part in parts:
        part.recenter(state, 0, 2)
    theta = merge_mps_tensors(state.tensors[0], state.tensors[1])

    expected = parts[0].noise_term(theta, 0, "left") + parts[1].noise_term(theta, 0, "left")
    np.testing.assert_allclose(summed.noise_term(theta, 0, "left"), expected, atol=1e-12)


def test_relocate_to_disk(tmp_path: Path) -> None:
    """Relocation keeps the cached environments and the results, and close removes the files."""
    state = random_state(length=5)
    effective = EffectiveOperator(heisenberg(5), directory=tmp_path)
    assert effective.tier is StorageTier.MEMORY

    state.set_canonical_form(2)
    effective.recenter(state, 2, 2)
    theta = merge_mps_tensors(state.tensors[2], state.tensors[3])
    before = effective.apply(theta, 2, 2)

    effective.relocate(StorageTier.DISK)
    assert effective.tier is StorageTier.DISK
    assert len(list(tmp_path.iterdir())) == 1
    np.testing.assert_allclose(effective.apply(theta, 2, 2), before)

    # Relocating to the current tier is a no-op.
    effective.relocate(StorageTier.DISK)
    assert len(list(tmp_path.iterdir())) == 1

    effective.close()
    assert not list(tmp_path.iterdir())
