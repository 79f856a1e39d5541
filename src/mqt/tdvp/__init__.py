# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""MQT TDVP init file.

MQT TDVP, a part of the Munich Quantum Toolkit (MQT), evolves matrix product states in time
with the two-site time-dependent variational principle.
"""

from __future__ import annotations

from ._version import version as __version__
from ._version import version_tuple as version_info

__all__ = ["__version__", "version_info"]
