# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Storage of cached environment tensors.

The effective operator of a TDVP sweep caches left and right environments keyed by ``(side, site)``.
They are kept in memory by default and can be moved to disk for large bond dimensions, where every
environment is written to its own ``.npy`` file in a temporary directory.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import MutableMapping
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

Key = tuple[str, int]


class StorageTier(Enum):
    """Enumerates where cached environments are kept."""

    MEMORY = "memory"
    DISK = "disk"


class MemoryStore(MutableMapping):
    """Dictionary backed environment store."""

    tier = StorageTier.MEMORY

    def __init__(self) -> None:
        """Initializes an empty store."""
        self._data: dict[Key, NDArray[np.complex128]] = {}

    def __getitem__(self, key: Key) -> NDArray[np.complex128]:
        return self._data[key]

    def __setitem__(self, key: Key, value: NDArray[np.complex128]) -> None:
        self._data[key] = value

    def __delitem__(self, key: Key) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[Key]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def close(self) -> None:
        """Drop all cached tensors."""
        self._data.clear()


class DiskStore(MutableMapping):
    """Environment store writing one ``.npy`` file per tensor.

    The temporary directory is created on the first write and removed by close().

    Attributes:
    directory (Path | None): The temporary directory, None before the first write.
    """

    tier = StorageTier.DISK

    def __init__(self, directory: str | Path | None = None) -> None:
        """Initializes an empty store.

        Args:
            directory: Parent directory of the temporary directory. Default is the system default.
        """
        self._parent = directory
        self.directory: Path | None = None
        self._keys: set[Key] = set()

    def _path(self, key: Key) -> Path:
        assert self.directory is not None
        side, site = key
        return self.directory / f"{side}_{site}.npy"

    def __getitem__(self, key: Key) -> NDArray[np.complex128]:
        if key not in self._keys:
            raise KeyError(key)
        return np.load(self._path(key))

    def __setitem__(self, key: Key, value: NDArray[np.complex128]) -> None:
        if self.directory is None:
            self.directory = Path(tempfile.mkdtemp(prefix="tdvp_env_", dir=self._parent))
            logger.debug("Created environment directory %s", self.directory)
        np.save(self._path(key), value)
        self._keys.add(key)

    def __delitem__(self, key: Key) -> None:
        if key not in self._keys:
            raise KeyError(key)
        self._path(key).unlink()
        self._keys.remove(key)

    def __iter__(self) -> Iterator[Key]:
        return iter(sorted(self._keys))

    def __len__(self) -> int:
        return len(self._keys)

    def close(self) -> None:
        """Remove the temporary directory and all files in it."""
        if self.directory is not None:
            shutil.rmtree(self.directory, ignore_errors=True)
            logger.debug("Removed environment directory %s", self.directory)
        self.directory = None
        self._keys.clear()


def make_store(tier: StorageTier, directory: str | Path | None = None) -> MemoryStore | DiskStore:
    """Create an empty store of the given tier.

    Args:
        tier: The storage tier.
        directory: Parent directory of the disk tier.

    Returns:
        MemoryStore | DiskStore: The new store.
    """
    if tier is StorageTier.DISK:
        return DiskStore(directory)
    return MemoryStore()
