# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Exceptions and warnings raised by MQT TDVP."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid input to a TDVP run.

    Raised before any tensor is modified, e.g. for a system of a single site, an operator whose physical
    indices do not match the state, or invalid sweep and option values.
    """


class ConvergenceWarning(RuntimeWarning):
    """The Krylov propagator did not reach its tolerance within the iteration budget."""
