# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Projected (effective) operators for TDVP sweeps.

The effective operator of a window of one or two sites is the MPO with all other sites contracted with the
MPS and its conjugate. The contracted parts are kept as left and right environments: the left environment
L[j] contains the sites 0..j and the right environment R[j] the sites j..N-1. They are built lazily when
the window moves and are cached in a store that lives in memory or on disk.

All environments use the index order (ket, mpo, bra).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import opt_einsum as oe

from .storage import StorageTier, make_store

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

    from ..data_structures.networks import MPO, MPS
    from .storage import DiskStore, MemoryStore

logger = logging.getLogger(__name__)


def merge_mps_tensors(left: NDArray[np.complex128], right: NDArray[np.complex128]) -> NDArray[np.complex128]:
    """Merge two neighboring MPS tensors into one.

    The shared bond is contracted and the two physical indices are combined, the left one being the more
    significant.

    Args:
        left: Left MPS tensor (d0, D0, D1).
        right: Right MPS tensor (d1, D1, D2).

    Returns:
        The merged tensor (d0*d1, D0, D2).
    """
    merged_tensor = oe.contract("abc,dce->adbe", left, right)
    merged_shape = merged_tensor.shape
    return merged_tensor.reshape((merged_shape[0] * merged_shape[1], merged_shape[2], merged_shape[3]))


def merge_mpo_tensors(left: NDArray[np.complex128], right: NDArray[np.complex128]) -> NDArray[np.complex128]:
    """Merge two neighboring MPO tensors into one.

    Args:
        left: Left MPO tensor (d0, d0', w0, w1).
        right: Right MPO tensor (d1, d1', w1, w2).

    Returns:
        The merged tensor (d0*d1, d0'*d1', w0, w2).
    """
    merged_tensor = oe.contract("acei,bdif->abcdef", left, right, optimize=True)
    s = merged_tensor.shape
    return merged_tensor.reshape((s[0] * s[1], s[2] * s[3], s[4], s[5]))


def boundary_environment(dtype: type = np.complex128) -> NDArray[np.complex128]:
    """Trivial environment beyond the ends of the chain.

    Returns:
        The (1, 1, 1) environment of the boundary bonds.
    """
    return np.ones((1, 1, 1), dtype=dtype)


def update_right_environment(
    ket: NDArray[np.complex128], bra: NDArray[np.complex128], op: NDArray[np.complex128], env: NDArray[np.complex128]
) -> NDArray[np.complex128]:
    r"""Absorb one site into a right environment.

          _____           ______
         /     \         /
      ---|1 B*2|---   ---|2
         \__0__/         |
            |            |
          __|__          |
         /  0  \         |
      ---|2 W 3|---   ---|1   R
         \__1__/         |
            |            |
          __|__          |
         /  0  \         |
      ---|1 A 2|---   ---|0
         \_____/         \______

    Args:
        ket: MPS tensor A.
        bra: MPS tensor B, conjugated in the contraction.
        op: MPO tensor W.
        env: Right environment R of the next site.

    Returns:
        The right environment including this site.
    """
    tensor = np.tensordot(ket, env, 1)
    tensor = np.tensordot(op, tensor, axes=((1, 3), (0, 2)))
    tensor = tensor.transpose((2, 1, 0, 3))
    return np.tensordot(tensor, bra.conj(), axes=((2, 3), (0, 2)))


def update_left_environment(
    ket: NDArray[np.complex128], bra: NDArray[np.complex128], op: NDArray[np.complex128], env: NDArray[np.complex128]
) -> NDArray[np.complex128]:
    r"""Absorb one site into a left environment.

     ______           _____
           \         /     \
          2|---   ---|1 B*2|---
           |         \__0__/
           |            |
           |          __|__
           |         /  0  \
      L   1|---   ---|2 W 3|---
           |         \__1__/
           |            |
           |          __|__
           |         /  0  \
          0|---   ---|1 A 2|---
     ______/         \_____/

    Args:
        ket: MPS tensor A.
        bra: MPS tensor B, conjugated in the contraction.
        op: MPO tensor W.
        env: Left environment L of the previous site.

    Returns:
        The left environment including this site.
    """
    tensor = np.tensordot(env, bra.conj(), axes=(2, 1))
    tensor = np.tensordot(op, tensor, axes=((0, 2), (2, 1)))
    return np.tensordot(ket, tensor, axes=((0, 1), (0, 2)))


def project_site(
    left_env: NDArray[np.complex128],
    right_env: NDArray[np.complex128],
    op: NDArray[np.complex128],
    tensor: NDArray[np.complex128],
) -> NDArray[np.complex128]:
    """Apply the effective operator of a window to a local tensor.

    The window may be a single site or a merged pair of sites, in which case op is the merged MPO tensor.

    Args:
        left_env: Left environment of the window.
        right_env: Right environment of the window.
        op: MPO tensor of the window.
        tensor: Local tensor (d, Dl, Dr).

    Returns:
        The tensor after applying the effective operator, with the same shape.
    """
    result = np.tensordot(tensor, right_env, axes=1)
    result = np.tensordot(op, result, axes=((1, 3), (0, 2)))
    result = np.tensordot(result, left_env, axes=((2, 1), (0, 1)))
    return result.transpose((0, 2, 1))


class EffectiveOperator:
    """Effective operator of an MPO with lazily cached environments.

    Attributes:
    mpo (MPO): The operator.
    length (int): Number of sites.
    lpos (int): Highest site absorbed into a current left environment, -1 if none.
    rpos (int): Lowest site absorbed into a current right environment, length if none.
    """

    def __init__(
        self,
        mpo: MPO,
        store: MemoryStore | DiskStore | None = None,
        directory: str | Path | None = None,
    ) -> None:
        """Initializes the effective operator without any cached environment.

        Args:
            mpo: The operator.
            store: Environment store. Default is a new memory store.
            directory: Parent directory used when relocating to disk.
        """
        self.mpo = mpo
        self.length = mpo.length
        self.lpos = -1
        self.rpos = self.length
        self.directory = directory
        self._store = store if store is not None else make_store(StorageTier.MEMORY)
        self._merged: dict[int, NDArray[np.complex128]] = {}

    @property
    def tier(self) -> StorageTier:
        """Storage tier of the cached environments."""
        return self._store.tier

    def left_environment(self, site: int) -> NDArray[np.complex128]:
        """Left environment containing the sites 0..site, the boundary for site -1.

        Returns:
            The cached environment.
        """
        if site < 0:
            return boundary_environment()
        return self._store[("L", site)]

    def right_environment(self, site: int) -> NDArray[np.complex128]:
        """Right environment containing the sites site..N-1, the boundary for site N.

        Returns:
            The cached environment.
        """
        if site >= self.length:
            return boundary_environment()
        return self._store[("R", site)]

    def _make_left(self, state: MPS, site: int) -> None:
        if self.lpos >= site:
            # Still valid, the window only moved backwards.
            self.lpos = site
            return
        position = self.lpos
        env = self.left_environment(position)
        while position < site:
            position += 1
            tensor = state.tensors[position]
            env = update_left_environment(tensor, tensor, self.mpo.tensors[position], env)
            self._store["L", position] = env
        self.lpos = site

    def _make_right(self, state: MPS, site: int) -> None:
        if self.rpos <= site:
            self.rpos = site
            return
        position = self.rpos
        env = self.right_environment(position)
        while position > site:
            position -= 1
            tensor = state.tensors[position]
            env = update_right_environment(tensor, tensor, self.mpo.tensors[position], env)
            self._store["R", position] = env
        self.rpos = site

    def recenter(self, state: MPS, site: int, nsite: int) -> None:
        """Make the environments of the window site..site+nsite-1 current.

        Args:
            state: The state whose tensors outside the window enter the environments.
            site: First site of the window.
            nsite: Number of sites in the window, 1 or 2.
        """
        self._make_left(state, site - 1)
        self._make_right(state, site + nsite)

    def _window_operator(self, site: int, nsite: int) -> NDArray[np.complex128]:
        if nsite == 1:
            return self.mpo.tensors[site]
        if site not in self._merged:
            self._merged[site] = merge_mpo_tensors(self.mpo.tensors[site], self.mpo.tensors[site + 1])
        return self._merged[site]

    def check_window(self, site: int, nsite: int) -> None:
        """Check that the environments of the window site..site+nsite-1 are cached.

        Raises:
            ValueError: If nsite is not 1 or 2 or the environments are not current.
        """
        if nsite not in {1, 2}:
            msg = f"Windows of {nsite} sites are not supported."
            raise ValueError(msg)
        if self.lpos != site - 1 or self.rpos != site + nsite:
            msg = (
                f"Environments of the window at site {site} with {nsite} sites are not cached "
                f"(lpos={self.lpos}, rpos={self.rpos})."
            )
            raise ValueError(msg)

    def apply(self, tensor: NDArray[np.complex128], site: int, nsite: int) -> NDArray[np.complex128]:
        """Apply the effective operator to a local tensor.

        Args:
            tensor: One-site tensor (d, Dl, Dr) or merged two-site tensor (d0*d1, Dl, Dr).
            site: First site of the window.
            nsite: Number of sites in the window.

        Returns:
            The result with the shape of tensor.

        Raises:
            ValueError: If the environments of the window are not cached.
        """
        self.check_window(site, nsite)
        return project_site(
            self.left_environment(site - 1),
            self.right_environment(site + nsite),
            self._window_operator(site, nsite),
            tensor,
        )

    def local_operator(
        self, site: int, nsite: int, shape: tuple[int, ...]
    ) -> Callable[[NDArray[np.complex128]], NDArray[np.complex128]]:
        """Matrix-free action on flattened local tensors, as used by the Krylov propagator.

        Returns:
            A function mapping a flat vector to a flat vector.
        """
        self.check_window(site, nsite)

        def matvec(vector: NDArray[np.complex128]) -> NDArray[np.complex128]:
            return self.apply(vector.reshape(shape), site, nsite).ravel()

        return matvec

    def noise_term(self, theta: NDArray[np.complex128], bond: int, ortho: str) -> NDArray[np.complex128]:
        """Density matrix perturbation of a two-site update.

        The environment and the MPO tensor on the orthonormal side are applied to theta and the resulting
        vectors are summed up as a density matrix on the (d, Dl) space of the left site for ``ortho="left"``
        or the (d, Dr) space of the right site for ``ortho="right"``.

        Args:
            theta: Merged two-site tensor (d0*d1, Dl, Dr) at the sites bond and bond + 1.
            bond: The bond of the update.
            ortho: "left" or "right".

        Returns:
            The Hermitian, positive semi-definite perturbation.

        Raises:
            ValueError: If ortho is invalid or the environments are not cached.
        """
        self.check_window(bond, 2)
        d0 = self.mpo.tensors[bond].shape[1]
        d1 = self.mpo.tensors[bond + 1].shape[1]
        theta4 = theta.reshape(d0, d1, theta.shape[1], theta.shape[2])
        if ortho == "left":
            term = oe.contract(
                "lwm,stwv,tulr->smvur", self.left_environment(bond - 1), self.mpo.tensors[bond], theta4
            )
            term = term.reshape(term.shape[0] * term.shape[1], -1)
            return term @ term.conj().T
        if ortho == "right":
            term = oe.contract(
                "tulr,suvw,rwn->tlvsn", theta4, self.mpo.tensors[bond + 1], self.right_environment(bond + 2)
            )
            term = term.reshape(-1, term.shape[3] * term.shape[4])
            return term.conj().T @ term
        msg = "ortho parameter must be left or right."
        raise ValueError(msg)

    def relocate(self, tier: StorageTier) -> None:
        """Move the cached environments to another storage tier.

        Args:
            tier: The target tier. Nothing happens if the environments are already there.
        """
        if tier is self.tier:
            return
        store = make_store(tier, self.directory)
        for key, value in self._store.items():
            store[key] = value
        logger.debug("Moved %d environments from %s to %s", len(store), self.tier.value, tier.value)
        self._store.close()
        self._store = store

    def close(self) -> None:
        """Release all cached environments."""
        self._store.close()
        self.lpos = -1
        self.rpos = self.length


class EffectiveOperatorSum:
    """Effective operator of an implicit sum of MPOs.

    Every call is forwarded to the effective operators of the addends and the results of apply and
    noise_term are summed. The summed MPO is never formed.
    """

    def __init__(self, operators: Sequence[EffectiveOperator]) -> None:
        """Initializes the sum.

        Args:
            operators: The effective operators of the addends.
        """
        self.operators = list(operators)
        self.length = self.operators[0].length

    @property
    def lpos(self) -> int:
        """Common lpos of the addends."""
        return self.operators[0].lpos

    @property
    def rpos(self) -> int:
        """Common rpos of the addends."""
        return self.operators[0].rpos

    @property
    def tier(self) -> StorageTier:
        """Common storage tier of the addends."""
        return self.operators[0].tier

    def recenter(self, state: MPS, site: int, nsite: int) -> None:
        """Recenter every addend, see EffectiveOperator.recenter."""
        for operator in self.operators:
            operator.recenter(state, site, nsite)

    def apply(self, tensor: NDArray[np.complex128], site: int, nsite: int) -> NDArray[np.complex128]:
        """Sum of the addends' actions on the local tensor.

        Returns:
            The result with the shape of tensor.
        """
        result = self.operators[0].apply(tensor, site, nsite)
        for operator in self.operators[1:]:
            result = result + operator.apply(tensor, site, nsite)
        return result

    def local_operator(
        self, site: int, nsite: int, shape: tuple[int, ...]
    ) -> Callable[[NDArray[np.complex128]], NDArray[np.complex128]]:
        """Matrix-free action of the sum on flattened local tensors.

        Returns:
            A function mapping a flat vector to a flat vector.
        """
        for operator in self.operators:
            operator.check_window(site, nsite)

        def matvec(vector: NDArray[np.complex128]) -> NDArray[np.complex128]:
            return self.apply(vector.reshape(shape), site, nsite).ravel()

        return matvec

    def noise_term(self, theta: NDArray[np.complex128], bond: int, ortho: str) -> NDArray[np.complex128]:
        """Sum of the addends' density matrix perturbations.

        Returns:
            The Hermitian perturbation.
        """
        terms = [operator.noise_term(theta, bond, ortho) for operator in self.operators]
        return np.sum(terms, axis=0)

    def relocate(self, tier: StorageTier) -> None:
        """Relocate every addend, see EffectiveOperator.relocate."""
        for operator in self.operators:
            operator.relocate(tier)

    def close(self) -> None:
        """Release the environments of every addend."""
        for operator in self.operators:
            operator.close()


def make_effective_operator(
    operator: MPO | Sequence[MPO], directory: str | Path | None = None
) -> EffectiveOperator | EffectiveOperatorSum:
    """Create the effective operator of an MPO or of an implicit sum of MPOs.

    Args:
        operator: A single MPO or a non-empty sequence of MPOs.
        directory: Parent directory used when relocating to disk.

    Returns:
        EffectiveOperator | EffectiveOperatorSum: The effective operator, with a memory store.
    """
    if isinstance(operator, (list, tuple)):
        return EffectiveOperatorSum([EffectiveOperator(mpo, directory=directory) for mpo in operator])
    return EffectiveOperator(operator, directory=directory)
