# Copyright (c) 2023 - 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Simulation Parameters for TDVP time evolution.

This module provides the classes that configure a two-site TDVP run. Sweeps holds the per-sweep resource
parameters (maximum and minimum bond dimension, truncation cutoff and density matrix noise), TDVPOptions
holds the remaining settings of the propagation (normalization, output, observer, Krylov parameters and
disk relocation), and sweep_schedule enumerates the bond visits of one symmetric sweep.
"""

from __future__ import annotations

import numbers
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple

from ..errors import ConfigurationError
from .observer import Observer

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path


class TimeStepMode(Enum):
    """Enumerates how the time argument of a run is distributed over the sweeps."""

    TOTAL = "total"
    PER_SWEEP = "per_sweep"


class SweepParams(NamedTuple):
    """Resource parameters of a single sweep."""

    max_bond_dim: int
    min_bond_dim: int
    cutoff: float
    noise: float


def _expand(name: str, value: float | Sequence[float], num_sweeps: int) -> list[float]:
    """Expand a scalar or a sequence to one value per sweep, padding with the last entry.

    Args:
        name: Parameter name used in error messages.
        value: Scalar or sequence of values.
        num_sweeps: Number of sweeps.

    Returns:
        list: One value per sweep.

    Raises:
        ConfigurationError: If the sequence is empty.
    """
    values = [value] if isinstance(value, numbers.Real) else list(value)
    if not values:
        msg = f"{name} must not be an empty sequence."
        raise ConfigurationError(msg)
    if len(values) < num_sweeps:
        values += [values[-1]] * (num_sweeps - len(values))
    return values[:num_sweeps]


class Sweeps:
    """Sweep schedule of a TDVP run.

    Each resource parameter is given either as a scalar (used for all sweeps) or as a sequence (one entry
    per sweep, padded with its last entry if it is shorter than the number of sweeps).

    Attributes:
    num_sweeps (int): Number of sweeps.

    Methods:
    max_bond_dim(sweep) / min_bond_dim(sweep) / cutoff(sweep) / noise(sweep):
        Parameter of the 1-based sweep number.
    params(sweep) -> SweepParams:
        All parameters of a sweep.
    """

    def __init__(
        self,
        num_sweeps: int,
        max_bond_dim: int | Sequence[int],
        min_bond_dim: int | Sequence[int] = 1,
        cutoff: float | Sequence[float] = 1e-8,
        noise: float | Sequence[float] = 0.0,
    ) -> None:
        """Initializes the sweep schedule.

        Args:
            num_sweeps: Number of sweeps, at least one.
            max_bond_dim: Maximum bond dimension per sweep.
            min_bond_dim: Minimum bond dimension per sweep. Default is 1.
            cutoff: Maximum discarded weight per bond decomposition. Default is 1e-8.
            noise: Prefactor of the density matrix perturbation. Default is 0, i.e. no perturbation.

        Raises:
            ConfigurationError: If any of the values is out of range.
        """
        if isinstance(num_sweeps, bool) or not isinstance(num_sweeps, numbers.Integral) or num_sweeps < 1:
            msg = f"num_sweeps must be a positive integer, got {num_sweeps}."
            raise ConfigurationError(msg)
        self.num_sweeps = int(num_sweeps)
        self._max_bond_dim = [int(d) for d in _expand("max_bond_dim", max_bond_dim, num_sweeps)]
        self._min_bond_dim = [int(d) for d in _expand("min_bond_dim", min_bond_dim, num_sweeps)]
        self._cutoff = [float(c) for c in _expand("cutoff", cutoff, num_sweeps)]
        self._noise = [float(n) for n in _expand("noise", noise, num_sweeps)]

        if any(d < 1 for d in self._max_bond_dim):
            msg = "max_bond_dim must be at least 1."
            raise ConfigurationError(msg)
        if any(d < 1 for d in self._min_bond_dim):
            msg = "min_bond_dim must be at least 1."
            raise ConfigurationError(msg)
        if any(c < 0 for c in self._cutoff):
            msg = "cutoff must be non-negative."
            raise ConfigurationError(msg)
        if any(n < 0 for n in self._noise):
            msg = "noise must be non-negative."
            raise ConfigurationError(msg)

    def _index(self, sweep: int) -> int:
        if not 1 <= sweep <= self.num_sweeps:
            msg = f"Sweep {sweep} outside of 1..{self.num_sweeps}."
            raise IndexError(msg)
        return sweep - 1

    def max_bond_dim(self, sweep: int) -> int:
        """Maximum bond dimension of the 1-based sweep."""
        return self._max_bond_dim[self._index(sweep)]

    def min_bond_dim(self, sweep: int) -> int:
        """Minimum bond dimension of the 1-based sweep."""
        return self._min_bond_dim[self._index(sweep)]

    def cutoff(self, sweep: int) -> float:
        """Truncation cutoff of the 1-based sweep."""
        return self._cutoff[self._index(sweep)]

    def noise(self, sweep: int) -> float:
        """Noise prefactor of the 1-based sweep."""
        return self._noise[self._index(sweep)]

    def params(self, sweep: int) -> SweepParams:
        """All resource parameters of the 1-based sweep.

        Returns:
            SweepParams: Maximum and minimum bond dimension, cutoff and noise.
        """
        i = self._index(sweep)
        return SweepParams(self._max_bond_dim[i], self._min_bond_dim[i], self._cutoff[i], self._noise[i])

    def __len__(self) -> int:
        """Number of sweeps."""
        return self.num_sweeps

    def __iter__(self) -> Iterator[SweepParams]:
        """Iterate over the parameters of all sweeps in order.

        Yields:
            SweepParams: The parameters of the next sweep.
        """
        for sweep in range(1, self.num_sweeps + 1):
            yield self.params(sweep)

    def __repr__(self) -> str:
        """Tabular representation of the schedule."""
        rows = ["Sweeps"]
        for sweep, p in enumerate(self, start=1):
            rows.append(
                f"{sweep}. max_bond_dim={p.max_bond_dim}, min_bond_dim={p.min_bond_dim}, "
                f"cutoff={p.cutoff:.1E}, noise={p.noise:.1E}"
            )
        return "\n".join(rows)


def sweep_schedule(length: int) -> Iterator[tuple[int, int]]:
    """Bond visits of one symmetric two-site sweep.

    The first half-sweep visits the bonds 0, ..., length - 2 from left to right, the second half-sweep
    visits them in reverse order.

    Args:
        length: Number of sites, at least two.

    Yields:
        tuple[int, int]: The bond and the half-sweep number (1 or 2).

    Raises:
        ConfigurationError: If the length is smaller than two.
    """
    if length < 2:
        msg = f"A two-site sweep requires at least two sites, got {length}."
        raise ConfigurationError(msg)
    for bond in range(length - 1):
        yield bond, 1
    for bond in reversed(range(length - 1)):
        yield bond, 2


class TDVPOptions:
    """Options of a TDVP run.

    Attributes:
    normalize (bool): Renormalize the local tensors after each propagation.
    output_level (int): 0 silent, 1 per-sweep summary and progress bar, 2 per-bond detail.
    observer (Observer): Measurement and stop hook.
    write_when_maxdim_exceeds (int | None): Relocate the environments to disk once a sweep's maximum bond
        dimension exceeds this value.
    propagator_tol (float): Error tolerance of the Krylov propagator.
    propagator_krylov_dim (int): Krylov subspace dimension.
    propagator_max_iter (int): Number of Krylov subspaces the propagator may build per local step.
    propagator_verbosity (int): 1 emits a ConvergenceWarning on non-convergence.
    time_step_mode (TimeStepMode): How the time argument is distributed over the sweeps.
    which_decomp (str | None): None or "svd" for the SVD, "eigen" for the density matrix decomposition.
    svd_alg (str | None): LAPACK driver of the SVD, "gesdd" or "gesvd", numpy's default if None.
    disk_directory (str | Path | None): Parent directory of the disk tier, the system default if None.
    """

    def __init__(
        self,
        *,
        normalize: bool = True,
        output_level: int = 1,
        observer: Observer | None = None,
        write_when_maxdim_exceeds: int | None = None,
        propagator_tol: float = 1e-14,
        propagator_krylov_dim: int = 20,
        propagator_max_iter: int = 1,
        propagator_verbosity: int = 0,
        time_step_mode: TimeStepMode | str = TimeStepMode.TOTAL,
        which_decomp: str | None = None,
        svd_alg: str | None = None,
        disk_directory: str | Path | None = None,
    ) -> None:
        """Initializes the options.

        Args:
            normalize: Renormalize the local tensors after each propagation. Default is True.
            output_level: Amount of printed output. Default is 1.
            observer: Measurement and stop hook. Default is a no-op Observer.
            write_when_maxdim_exceeds: Threshold for the relocation to disk. Default is None (never).
            propagator_tol: Krylov error tolerance. Default is 1e-14.
            propagator_krylov_dim: Krylov subspace dimension. Default is 20.
            propagator_max_iter: Krylov rebuild budget. Default is 1.
            propagator_verbosity: Krylov verbosity. Default is 0.
            time_step_mode: TimeStepMode or its value. Default is TimeStepMode.TOTAL.
            which_decomp: Bond decomposition. Default is None (SVD).
            svd_alg: SVD driver. Default is None.
            disk_directory: Parent directory of the disk tier. Default is None.

        Raises:
            ConfigurationError: If any of the values is invalid.
        """
        if output_level not in {0, 1, 2}:
            msg = f"output_level must be 0, 1 or 2, got {output_level}."
            raise ConfigurationError(msg)
        if write_when_maxdim_exceeds is not None and write_when_maxdim_exceeds < 0:
            msg = "write_when_maxdim_exceeds must be non-negative."
            raise ConfigurationError(msg)
        if propagator_tol <= 0:
            msg = "propagator_tol must be positive."
            raise ConfigurationError(msg)
        if propagator_krylov_dim < 1:
            msg = "propagator_krylov_dim must be at least 1."
            raise ConfigurationError(msg)
        if propagator_max_iter < 1:
            msg = "propagator_max_iter must be at least 1."
            raise ConfigurationError(msg)
        if which_decomp not in {None, "svd", "eigen"}:
            msg = f"which_decomp must be None, 'svd' or 'eigen', got {which_decomp!r}."
            raise ConfigurationError(msg)
        if svd_alg not in {None, "gesdd", "gesvd"}:
            msg = f"svd_alg must be None, 'gesdd' or 'gesvd', got {svd_alg!r}."
            raise ConfigurationError(msg)
        try:
            time_step_mode = TimeStepMode(time_step_mode)
        except ValueError as e:
            msg = f"Unknown time_step_mode {time_step_mode!r}."
            raise ConfigurationError(msg) from e
        if observer is not None and not isinstance(observer, Observer):
            msg = "observer must be an Observer instance."
            raise ConfigurationError(msg)

        self.normalize = normalize
        self.output_level = output_level
        self.observer = observer if observer is not None else Observer()
        self.write_when_maxdim_exceeds = write_when_maxdim_exceeds
        self.propagator_tol = propagator_tol
        self.propagator_krylov_dim = propagator_krylov_dim
        self.propagator_max_iter = propagator_max_iter
        self.propagator_verbosity = propagator_verbosity
        self.time_step_mode = time_step_mode
        self.which_decomp = which_decomp
        self.svd_alg = svd_alg
        self.disk_directory = disk_directory
