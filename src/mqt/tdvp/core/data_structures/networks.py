# Copyright (c) 2023 - 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Tensor Network Data Structures.

This module implements classes for representing quantum states and operators using tensor networks.
It defines the Matrix Product State (MPS) and Matrix Product Operator (MPO) classes, along with methods
for canonicalization, normalization, expectation values and validity checks. The MPS keeps track of its
orthogonality center so that sweeping algorithms can skip redundant canonicalization.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

import numpy as np
import opt_einsum as oe

from ..libraries.gate_library import X, Y, Z
from ..methods.decompositions import right_qr

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ..libraries.gate_library import BaseGate


class MPS:
    """Matrix Product State (MPS) of a chain of sites.

    Every tensor has the index order (sigma, chi_left, chi_right). The state is mutated in place by the
    TDVP sweep, which relies on orthogonality_center to skip canonicalization that is already in place.

    Attributes:
    length (int): The number of sites in the MPS.
    tensors (list[NDArray[np.complex128]]): List of rank-3 tensors representing the MPS.
    physical_dimensions (list[int]): List of physical dimensions for each site.
    flipped (bool): Indicates if the network has been flipped.
    orthogonality_center (int | None): Site of the orthogonality center, None if unknown.
    """

    def __init__(
        self,
        length: int,
        tensors: list[NDArray[np.complex128]] | None = None,
        physical_dimensions: list[int] | int | None = None,
        state: str = "zeros",
        basis_string: str | None = None,
    ) -> None:
        """Initializes a Matrix Product State (MPS).

        Args:
            length: Number of sites in the MPS.
            tensors: Predefined tensors representing the MPS. Must match `length` if provided.
                If None, tensors are initialized according to `state`.
            physical_dimensions: Physical dimension for each site. Defaults to spin-1/2 (dimension 2) if None.
                Inferred from the tensors if they are given.
            state: Initial product state configuration. Valid options include:
                - "zeros": Initializes all sites to |0⟩.
                - "ones": Initializes all sites to |1⟩.
                - "x+": Initializes each site to (|0⟩ + |1⟩)/√2.
                - "x-": Initializes each site to (|0⟩ - |1⟩)/√2.
                - "y+": Initializes each site to (|0⟩ + i|1⟩)/√2.
                - "y-": Initializes each site to (|0⟩ - i|1⟩)/√2.
                - "Neel": Alternating pattern |1010...⟩.
                - "wall": Domain wall at the middle |000111⟩.
                - "random": Initializes each site randomly.
                - "basis": Initializes a computational basis state given by `basis_string`.
                Default is "zeros".
            basis_string: String used to initialize the state in a specific computational basis,
                e.g. "0101" for a 4-site state.

        Raises:
            ValueError: If the provided `state` parameter does not match any valid initialization string.
        """
        self.flipped = False
        self.length = length
        if tensors is not None:
            assert len(tensors) == length
            self.tensors = list(tensors)
            self.physical_dimensions = [tensor.shape[0] for tensor in self.tensors]
            self.orthogonality_center: int | None = None
            return

        self.tensors = []
        if physical_dimensions is None:
            self.physical_dimensions = [2] * length
        elif isinstance(physical_dimensions, int):
            self.physical_dimensions = [physical_dimensions] * length
        else:
            self.physical_dimensions = list(physical_dimensions)
        assert len(self.physical_dimensions) == length

        if state == "basis":
            assert basis_string is not None, "basis_string must be provided for 'basis' state initialization."
            self.init_mps_from_basis(basis_string, self.physical_dimensions)
            self.orthogonality_center = 0
            return

        rng = np.random.default_rng()
        for i, d in enumerate(self.physical_dimensions):
            vector = np.zeros(d, dtype=complex)
            if state == "zeros":
                vector[0] = 1
            elif state == "ones":
                vector[1] = 1
            elif state == "x+":
                vector[0] = 1 / np.sqrt(2)
                vector[1] = 1 / np.sqrt(2)
            elif state == "x-":
                vector[0] = 1 / np.sqrt(2)
                vector[1] = -1 / np.sqrt(2)
            elif state == "y+":
                vector[0] = 1 / np.sqrt(2)
                vector[1] = 1j / np.sqrt(2)
            elif state == "y-":
                vector[0] = 1 / np.sqrt(2)
                vector[1] = -1j / np.sqrt(2)
            elif state == "Neel":
                if i % 2:
                    vector[0] = 1
                else:
                    vector[1] = 1
            elif state == "wall":
                if i < length // 2:
                    vector[0] = 1
                else:
                    vector[1] = 1
            elif state == "random":
                vector = rng.standard_normal(d) + 1j * rng.standard_normal(d)
                vector /= np.linalg.norm(vector)
            else:
                msg = "Invalid state string"
                raise ValueError(msg)

            self.tensors.append(vector.reshape(d, 1, 1))
        self.orthogonality_center = 0

    def init_mps_from_basis(self, basis_string: str, physical_dimensions: list[int]) -> None:
        """Product state of computational basis states, one character per site.

        Args:
            basis_string: A string like "0101".
            physical_dimensions: The physical dimension of each site.

        Raises:
            ValueError: If the string does not fit the chain.
        """
        if len(basis_string) != len(physical_dimensions):
            msg = f"Basis string of length {len(basis_string)} for {len(physical_dimensions)} sites."
            raise ValueError(msg)
        for d, char in zip(physical_dimensions, basis_string):
            tensor = np.zeros((d, 1, 1), dtype=complex)
            tensor[int(char), 0, 0] = 1.0
            self.tensors.append(tensor)

    def get_max_bond(self) -> int:
        """Maximum bond dimension of the network.

        Returns:
            int: The largest virtual dimension found among all tensors.
        """
        return max(max(tensor.shape[1:]) for tensor in self.tensors)

    def bond_dimensions(self) -> list[int]:
        """Dimensions of the internal bonds.

        Returns:
            list[int]: Entry b is the dimension of the bond between the sites b and b + 1.
        """
        return [tensor.shape[2] for tensor in self.tensors[:-1]]

    def flip_network(self) -> None:
        """Mirror the chain so that right-to-left operations can reuse left-to-right code."""
        self.tensors = [np.transpose(tensor, (0, 2, 1)) for tensor in reversed(self.tensors)]
        self.physical_dimensions = self.physical_dimensions[::-1]
        if self.orthogonality_center is not None:
            self.orthogonality_center = self.length - 1 - self.orthogonality_center
        self.flipped = not self.flipped

    def almost_equal(self, other: MPS) -> bool:
        """Tensor-wise comparison with np.allclose.

        Args:
            other: The MPS to compare with.

        Returns:
            bool: True if both states have the same shapes and close entries.
        """
        if self.length != other.length:
            return False
        return all(
            mine.shape == theirs.shape and np.allclose(mine, theirs)
            for mine, theirs in zip(self.tensors, other.tensors)
        )

    def shift_orthogonality_center_right(self, current_orthogonality_center: int) -> None:
        """Move the orthogonality center one site to the right with a QR decomposition.

        At the last site the R factor is dropped, which normalizes the state.

        Args:
            current_orthogonality_center: The current center.
        """
        site = current_orthogonality_center
        self.tensors[site], bond_tensor = right_qr(self.tensors[site])
        if site + 1 < self.length:
            self.tensors[site + 1] = oe.contract("ij,ajc->aic", bond_tensor, self.tensors[site + 1])
            site += 1
        self.orthogonality_center = site

    def shift_orthogonality_center_left(self, current_orthogonality_center: int) -> None:
        """Move the orthogonality center one site to the left.

        Args:
            current_orthogonality_center: The current center.
        """
        self.flip_network()
        self.shift_orthogonality_center_right(self.length - 1 - current_orthogonality_center)
        self.flip_network()

    def set_canonical_form(self, orthogonality_center: int) -> None:
        """Bring the MPS into mixed canonical form around a site.

        QR sweeps from both ends. Prefer the shift methods when the current center is known.

        Args:
            orthogonality_center: Site that holds the norm afterwards.
        """
        for site in range(orthogonality_center):
            self.shift_orthogonality_center_right(site)
        self.flip_network()
        for site in range(self.length - 1 - orthogonality_center):
            self.shift_orthogonality_center_right(site)
        self.flip_network()
        self.orthogonality_center = orthogonality_center

    def normalize(self, form: str = "B") -> None:
        """Normalize the state by a full QR sweep.

        Form "B" leaves every tensor right-orthonormal and the center at site 0. Form "A" leaves every
        tensor left-orthonormal and the center at the last site.

        Args:
            form: "A" or "B". Default is "B".
        """
        if form == "B":
            self.flip_network()
        for site in range(self.length):
            self.shift_orthogonality_center_right(site)
        if form == "B":
            self.flip_network()

    def scalar_product(self, other: MPS) -> np.complex128:
        """Compute the scalar (inner) product <self|other> between two Matrix Product States.

        Args:
            other (MPS): The second Matrix Product State.

        Returns:
            np.complex128: The resulting scalar product as a complex number.
        """
        env = np.ones((1, 1), dtype=np.complex128)
        for bra, ket in zip(self.tensors, other.tensors):
            env = oe.contract("ab,sac,sbd->cd", env, np.conj(bra), ket)
        return np.complex128(env[0, 0])

    def local_expect(self, operator: BaseGate | NDArray[np.complex128], site: int) -> np.complex128:
        """Compute the expectation value of a single-site operator.

        The result is normalized by the squared norm of the state, so the state does not need to be
        in canonical form.

        Args:
            operator: The local operator (a gate or its matrix).
            site: The site the operator acts on.

        Returns:
            np.complex128: The expectation value <psi|O|psi> / <psi|psi>.
        """
        matrix = operator if isinstance(operator, np.ndarray) else operator.matrix
        temp_state = copy.deepcopy(self)
        temp_state.tensors[site] = oe.contract("ab, bcd->acd", matrix, temp_state.tensors[site])
        return np.complex128(self.scalar_product(temp_state) / self.scalar_product(self))

    def norm(self) -> np.float64:
        """Norm calculation.

        Returns:
            np.float64: The norm of the state.
        """
        return np.float64(np.sqrt(abs(self.scalar_product(self))))

    def check_if_valid_mps(self) -> None:
        """Check that the virtual bonds of neighboring tensors match.

        Raises:
            ValueError: If a right bond differs from the left bond of the next tensor.
        """
        for site, (current, following) in enumerate(zip(self.tensors, self.tensors[1:])):
            if current.shape[2] != following.shape[1]:
                msg = f"Bond mismatch between the sites {site} and {site + 1}: {current.shape} and {following.shape}."
                raise ValueError(msg)

    def check_canonical_form(self) -> list[int]:
        """Sites that qualify as orthogonality center.

        A site qualifies if every tensor to its left is left-orthonormal and every tensor to its right is
        right-orthonormal.

        Returns:
            list[int]: Possible orthogonality centers, empty if the MPS is not in canonical form.
        """

        def is_identity(mat: NDArray[np.complex128]) -> bool:
            return np.allclose(mat, np.eye(mat.shape[0]))

        left_ortho = [is_identity(oe.contract("sab,sac->bc", np.conj(t), t)) for t in self.tensors]
        right_ortho = [is_identity(oe.contract("sab,scb->ac", t, np.conj(t))) for t in self.tensors]
        return [
            site for site in range(self.length) if all(left_ortho[:site]) and all(right_ortho[site + 1 :])
        ]

    def to_vec(self) -> NDArray[np.complex128]:
        r"""Converts the MPS to a full state vector representation.

        Site 0 is the most significant index, matching MPO.to_matrix.

        Returns:
                A one-dimensional NumPy array of length \(\prod_{\ell=1}^L d_\ell\)
                representing the state vector.
        """
        # Each tensor has shape (d, chi_left, chi_right) with chi_left=1 for the first tensor.
        vec = self.tensors[0][:, 0, :]  # shape: (d_1, chi_1)
        for tensor in self.tensors[1:]:
            vec = oe.contract("ab,cbd->acd", vec, tensor)
            vec = vec.reshape(-1, vec.shape[-1])
        return vec[:, 0].copy()


class MPO:
    """Matrix Product Operator (MPO) of a one-dimensional Hamiltonian.

    Every tensor has the index order (sigma, sigma', w_left, w_right), where sigma acts on the ket side.
    The built-in models are assembled from operator-valued blocks in the usual upper-triangular
    finite state machine form and then transposed into this order.

    Attributes:
    tensors (list[NDArray[np.complex128]]): The rank-4 site tensors.
    length (int): The number of sites.
    physical_dimension (int): The local dimension of the first site.
    """

    tensors: list[NDArray[np.complex128]]
    length: int
    physical_dimension: int

    @property
    def physical_dimensions(self) -> list[tuple[int, int]]:
        """Output and input physical dimension of every site."""
        return [(tensor.shape[0], tensor.shape[1]) for tensor in self.tensors]

    def _init_from_blocks(
        self,
        length: int,
        first_row: list[NDArray[np.complex128]],
        bulk: NDArray[np.complex128],
        last_column: list[NDArray[np.complex128]],
    ) -> None:
        """Assemble a translation invariant MPO from its operator blocks.

        The blocks are indexed (w_left, w_right, sigma, sigma'). The last entry of first_row is the
        on-site term, which is all that remains of a single-site chain.

        Args:
            length: Number of sites.
            first_row: Blocks of the left boundary tensor.
            bulk: Block matrix of the inner tensors.
            last_column: Blocks of the right boundary tensor.
        """
        if length == 1:
            blocks = [first_row[-1][np.newaxis, np.newaxis]]
        else:
            left = np.array(first_row)[np.newaxis]
            right = np.array(last_column)[:, np.newaxis]
            blocks = [left] + [bulk] * (length - 2) + [right]

        self.tensors = [np.transpose(block, (2, 3, 0, 1)).astype(np.complex128) for block in blocks]
        self.length = length
        self.physical_dimension = self.tensors[0].shape[0]

    def init_ising(self, length: int, J: float, g: float) -> None:  # noqa: N803
        """Transverse field Ising model H = -J sum_i Z_i Z_{i+1} - g sum_i X_i.

        Bulk block matrix:

            [[ I, -J Z, -g X ],
             [ 0,    0,    Z ],
             [ 0,    0,    I ]]

        The left boundary is its first row, the right boundary its last column.

        Args:
            length: Number of sites.
            J: Nearest-neighbor coupling.
            g: Transverse field.
        """
        identity = np.eye(2, dtype=complex)
        x = X().matrix
        z = Z().matrix

        bulk = np.zeros((3, 3, 2, 2), dtype=complex)
        bulk[0, 0] = identity
        bulk[0, 1] = -J * z
        bulk[0, 2] = -g * x
        bulk[1, 2] = z
        bulk[2, 2] = identity

        self._init_from_blocks(length, list(bulk[0]), bulk, list(bulk[:, 2]))

    def init_heisenberg(self, length: int, Jx: float, Jy: float, Jz: float, h: float) -> None:  # noqa: N803
        """Anisotropic Heisenberg (XYZ) model in a longitudinal field.

        H = -sum_i (Jx X_i X_{i+1} + Jy Y_i Y_{i+1} + Jz Z_i Z_{i+1}) - h sum_i Z_i, with a 5x5 bulk
        block matrix whose first row holds I and the left halves of the couplings and whose last
        column holds the right halves and I.

        Args:
            length: Number of sites.
            Jx: XX coupling.
            Jy: YY coupling.
            Jz: ZZ coupling.
            h: Longitudinal field.
        """
        identity = np.eye(2, dtype=complex)
        paulis = [X().matrix, Y().matrix, Z().matrix]

        bulk = np.zeros((5, 5, 2, 2), dtype=complex)
        bulk[0, 0] = identity
        bulk[4, 4] = identity
        bulk[0, 4] = -h * paulis[2]
        for channel, (coupling, pauli) in enumerate(zip((Jx, Jy, Jz), paulis), start=1):
            bulk[0, channel] = -coupling * pauli
            bulk[channel, 4] = pauli

        self._init_from_blocks(length, list(bulk[0]), bulk, list(bulk[:, 4]))

    def init_identity(self, length: int, physical_dimension: int = 2) -> None:
        """Identity operator with bond dimension 1.

        Args:
            length: Number of sites.
            physical_dimension: Local dimension. Default is 2.
        """
        site = np.eye(physical_dimension, dtype=np.complex128).reshape(physical_dimension, physical_dimension, 1, 1)
        self.tensors = [site] * length
        self.length = length
        self.physical_dimension = physical_dimension

    def init_custom(self, tensors: list[NDArray[np.complex128]], *, transpose: bool = True) -> None:
        """MPO from user tensors.

        Args:
            tensors: The site tensors.
            transpose: If True the tensors are given as (w_left, w_right, sigma, sigma') and are transposed
                into the MPO index order. Default is True.

        Raises:
            ValueError: If neighboring bonds do not match.
        """
        if transpose:
            self.tensors = [np.transpose(tensor, (2, 3, 0, 1)) for tensor in tensors]
        else:
            self.tensors = list(tensors)
        if not self.check_if_valid_mpo():
            msg = "Bond dimensions of neighboring MPO tensors do not match."
            raise ValueError(msg)
        self.length = len(self.tensors)
        self.physical_dimension = self.tensors[0].shape[0]

    def to_matrix(self) -> NDArray[np.complex128]:
        """Dense matrix of the operator.

        Only sensible for short chains.

        Returns:
            The matrix, with site 0 as the most significant index.
        """
        mat = self.tensors[0]
        for tensor in self.tensors[1:]:
            mat = oe.contract("abcd,efdg->aebfcg", mat, tensor)
            rows, cols = mat.shape[0] * mat.shape[1], mat.shape[2] * mat.shape[3]
            mat = mat.reshape(rows, cols, mat.shape[4], mat.shape[5])
        return mat[:, :, 0, 0]

    def check_if_valid_mpo(self) -> bool:
        """Whether the virtual bonds of neighboring tensors match.

        Returns:
            bool: True if every right bond equals the left bond of the next tensor.
        """
        return all(
            current.shape[3] == following.shape[2] for current, following in zip(self.tensors, self.tensors[1:])
        )
