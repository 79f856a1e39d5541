# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Library of local operators.

This module defines the single-site operators used to build Hamiltonians and observables.
Each operator is implemented as a class derived from BaseGate and carries its matrix representation.
The GateLibrary class aggregates all these classes for lookup by name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


class BaseGate:
    """Base class representing a local operator.

    Attributes:
        name: The name of the operator.
        matrix: The matrix representation of the operator.
        dimension: The physical dimension the operator acts on.
    """

    name: str = "base"
    matrix: NDArray[np.complex128]
    dimension: int

    def __init__(self, mat: NDArray[np.complex128]) -> None:
        """Initializes a BaseGate instance with the given matrix.

        Args:
            mat: The matrix representation of the operator.

        Raises:
            ValueError: If the matrix is not square.
        """
        mat = np.asarray(mat, dtype=np.complex128)
        if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
            msg = "Matrix must be square"
            raise ValueError(msg)

        self.matrix = mat
        self.dimension = mat.shape[0]

    def __add__(self, other: BaseGate) -> BaseGate:
        """Adds two operators acting on the same dimension.

        Args:
            other: The operator to be added.

        Raises:
            ValueError: If the operators have different dimensions.

        Returns:
            BaseGate: A new operator representing the sum.
        """
        if self.dimension != other.dimension:
            msg = "Cannot add operators with different dimension"
            raise ValueError(msg)
        return BaseGate(self.matrix + other.matrix)

    def __mul__(self, other: BaseGate | complex) -> BaseGate:
        """Multiplies two operators or scales an operator by a scalar.

        Args:
            other: The operator or scalar to multiply.

        Raises:
            ValueError: If the operators have different dimensions.

        Returns:
            BaseGate: A new operator representing the product or the scaled operator.
        """
        if isinstance(other, BaseGate):
            if self.dimension != other.dimension:
                msg = "Cannot multiply operators with different dimension"
                raise ValueError(msg)
            return BaseGate(self.matrix @ other.matrix)

        return BaseGate(self.matrix * other)

    def __rmul__(self, other: BaseGate | complex) -> BaseGate:
        """Right multiplication, see __mul__.

        Returns:
            BaseGate: A new operator representing the product.
        """
        return self.__mul__(other)

    def dag(self) -> BaseGate:
        """Returns the conjugate transpose (dagger) of the operator.

        Returns:
            BaseGate: A new operator representing the conjugate transpose.
        """
        return BaseGate(np.conj(self.matrix).T)


class X(BaseGate):
    """Pauli-X operator."""

    name = "x"

    def __init__(self) -> None:
        """Initializes the Pauli-X operator."""
        super().__init__(np.array([[0, 1], [1, 0]]))


class Y(BaseGate):
    """Pauli-Y operator."""

    name = "y"

    def __init__(self) -> None:
        """Initializes the Pauli-Y operator."""
        super().__init__(np.array([[0, -1j], [1j, 0]]))


class Z(BaseGate):
    """Pauli-Z operator."""

    name = "z"

    def __init__(self) -> None:
        """Initializes the Pauli-Z operator."""
        super().__init__(np.array([[1, 0], [0, -1]]))


class Id(BaseGate):
    """Identity operator of arbitrary dimension."""

    name = "id"

    def __init__(self, d: int = 2) -> None:
        """Initializes the identity.

        Args:
            d: Physical dimension.
        """
        super().__init__(np.eye(d))


class Destroy(BaseGate):
    """Annihilation operator truncated to d levels."""

    name = "destroy"

    def __init__(self, d: int = 2) -> None:
        """Initializes the annihilation operator.

        Args:
            d: Physical dimension.
        """
        super().__init__(np.diag(np.sqrt(np.arange(1, d)), k=1))


class Create(BaseGate):
    """Creation operator truncated to d levels."""

    name = "create"

    def __init__(self, d: int = 2) -> None:
        """Initializes the creation operator.

        Args:
            d: Physical dimension.
        """
        super().__init__(np.diag(np.sqrt(np.arange(1, d)), k=-1))


class GateLibrary:
    """Lookup of the local operators by name."""

    x = X
    y = Y
    z = Z
    id = Id
    destroy = Destroy
    create = Create

    @classmethod
    def get(cls, name: str) -> BaseGate:
        """Instantiate an operator by its (case-insensitive) name.

        Args:
            name: One of "x", "y", "z", "id", "destroy", "create".

        Returns:
            BaseGate: A fresh instance of the requested operator.

        Raises:
            ValueError: If the name is unknown.
        """
        gate = getattr(cls, name.lower(), None)
        if not (isinstance(gate, type) and issubclass(gate, BaseGate)):
            msg = f"Operator {name} not found in GateLibrary."
            raise ValueError(msg)
        return gate()
