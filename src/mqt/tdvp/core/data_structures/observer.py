# Copyright (c) 2023 - 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Observers for TDVP sweeps.

An observer is called by the TDVP sweep after every bond update and after every completed sweep. The base
class does nothing and never stops the run. MeasurementObserver records the truncation errors and bond
dimensions of the run and measures single-site observables after each sweep. It can also stop the run
once the truncation error of a sweep exceeds a given limit.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING

import numpy as np

from ..libraries.gate_library import BaseGate, GateLibrary

if TYPE_CHECKING:
    from ..methods.decompositions import Spectrum
    from .networks import MPS

logger = logging.getLogger(__name__)


class Observable:
    """Single-site observable measured by a MeasurementObserver.

    Attributes:
    gate (BaseGate): The operator that acts as the observable.
    site (int): The site on which the observable is measured.
    results (list[np.complex128]): Expectation value after each completed sweep.
    """

    def __init__(self, gate: BaseGate | str, site: int) -> None:
        """Initializes an Observable instance.

        Args:
            gate: The operator or its name in the GateLibrary, e.g. "z".
            site: The site index on which this observable is measured.
        """
        if isinstance(gate, str):
            gate = GateLibrary.get(gate)
        self.gate = copy.deepcopy(gate)
        self.site = site
        self.results: list[np.complex128] = []

    def measure(self, state: MPS) -> np.complex128:
        """Measure the observable and record the result.

        Args:
            state: The state to measure.

        Returns:
            np.complex128: The expectation value.
        """
        value = state.local_expect(self.gate, self.site)
        self.results.append(value)
        return value


class Observer:
    """No-op observer.

    Subclasses override on_bond_update and on_sweep_done. A truthy return value of on_sweep_done stops
    the run after the current sweep.
    """

    def on_bond_update(
        self,
        state: MPS,
        bond: int,
        sweep: int,
        half_sweep: int,
        spectrum: Spectrum,
        output_level: int,
        *,
        sweep_is_done: bool,
    ) -> None:
        """Called after every two-site update.

        Args:
            state: The state being evolved.
            bond: The bond that was updated.
            sweep: The 1-based sweep number.
            half_sweep: 1 for the left-to-right pass, 2 for the right-to-left pass.
            spectrum: The retained spectrum of the bond decomposition.
            output_level: The output level of the run.
            sweep_is_done: True for the last bond update of a sweep.
        """

    def on_sweep_done(self, state: MPS, sweep: int, output_level: int) -> bool:  # noqa: ARG002, PLR6301
        """Called after every completed sweep.

        Returns:
            bool: True to stop the run.
        """
        return False


class MeasurementObserver(Observer):
    """Observer that records the truncation of a run and measures observables after each sweep.

    Attributes:
    observables (list[Observable]): Observables measured after each sweep.
    truncation_error_limit (float | None): Stop the run once a sweep's maximum truncation error exceeds it.
    truncation_errors (list[float]): Maximum truncation error of each sweep.
    max_bond_dims (list[int]): Maximum bond dimension after each sweep.
    bond_truncation_errors (list[list[float]]): Truncation error of every bond update, per sweep.
    """

    def __init__(
        self, observables: list[Observable] | None = None, truncation_error_limit: float | None = None
    ) -> None:
        """Initializes the observer.

        Args:
            observables: Observables to measure after each sweep. Default is None (no measurements).
            truncation_error_limit: Optional limit on the truncation error of a sweep.
        """
        self.observables = list(observables) if observables is not None else []
        self.truncation_error_limit = truncation_error_limit
        self.truncation_errors: list[float] = []
        self.max_bond_dims: list[int] = []
        self.bond_truncation_errors: list[list[float]] = []
        self._current: list[float] = []

    def on_bond_update(
        self,
        state: MPS,  # noqa: ARG002
        bond: int,  # noqa: ARG002
        sweep: int,  # noqa: ARG002
        half_sweep: int,  # noqa: ARG002
        spectrum: Spectrum,
        output_level: int,  # noqa: ARG002
        *,
        sweep_is_done: bool,
    ) -> None:
        """Record the truncation error of a bond update.

        Args:
            state: The state being evolved.
            bond: The bond that was updated.
            sweep: The 1-based sweep number.
            half_sweep: 1 or 2.
            spectrum: The retained spectrum of the bond decomposition.
            output_level: The output level of the run.
            sweep_is_done: True for the last bond update of a sweep.
        """
        self._current.append(spectrum.truncation_error)
        if sweep_is_done:
            self.bond_truncation_errors.append(self._current)
            self._current = []

    def on_sweep_done(self, state: MPS, sweep: int, output_level: int) -> bool:
        """Measure the observables and check the truncation error limit.

        Args:
            state: The state after the sweep.
            sweep: The 1-based sweep number.
            output_level: The output level of the run.

        Returns:
            bool: True if the truncation error of the sweep exceeds the limit.
        """
        errors = self.bond_truncation_errors[-1] if self.bond_truncation_errors else []
        max_error = max(errors, default=0.0)
        self.truncation_errors.append(max_error)
        self.max_bond_dims.append(state.get_max_bond())
        for observable in self.observables:
            value = observable.measure(state)
            if output_level >= 2:
                logger.info("Sweep %d: <%s_%d> = %s", sweep, observable.gate.name, observable.site, value)

        if self.truncation_error_limit is not None and max_error > self.truncation_error_limit:
            logger.info(
                "Stopping after sweep %d: truncation error %.3e exceeds %.3e",
                sweep,
                max_error,
                self.truncation_error_limit,
            )
            return True
        return False
