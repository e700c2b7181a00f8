"""Device-local key/value persistence.

Every piece of persisted state (transactions, credential vault, preferences) is a
single JSON blob stored under a key. :class:`PersistencePort` is the interface the
stores depend on; :class:`FileStore` keeps one file per key on disk and
:class:`MemoryStore` keeps blobs in memory.

Running out of space is reported as :class:`~Budgly.status.status.StorageFullException`.
"""
import abc
import contextlib
import errno
import logging
import os
import pathlib
import re
import tempfile
from typing import Dict, List, Optional

from ..status import status

KEY_PATTERN = re.compile(r'[A-Za-z0-9_.-]+')

CAPACITY_ERRNOS = tuple(
    code for code in (
        getattr(errno, 'ENOSPC', None),
        getattr(errno, 'EDQUOT', None),
        getattr(errno, 'EFBIG', None),
    ) if code is not None
)


def verify_key(key: str) -> str:
    """Return the key if it is usable as a slot name.

    Raises:
        ValueError: If the key is empty or contains path characters.
    """
    if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key):
        raise ValueError(f'Invalid storage key: "{key}"')
    return key


class PersistencePort(abc.ABC):
    """Interface of a key/value slot store holding JSON text."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored text, or None if the slot is empty."""

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None:
        """Replace the slot as a whole.

        Raises:
            status.StorageFullException: If there is no capacity left.
        """

    @abc.abstractmethod
    def remove(self, key: str) -> None:
        """Empty the slot. Removing an empty slot is not an error."""


class FileStore(PersistencePort):
    """Stores each key as ``<root>/<key>.json``.

    Writes go to a temporary file in the same directory that is then renamed over
    the slot, so readers see either the old or the new blob.
    """

    def __init__(self, root: pathlib.Path) -> None:
        self.root = pathlib.Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, key: str) -> pathlib.Path:
        return self.root / f'{verify_key(key)}.json'

    def get(self, key: str) -> Optional[str]:
        path = self.path(key)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    def set(self, key: str, value: str) -> None:
        path = self.path(key)
        self.root.mkdir(parents=True, exist_ok=True)

        fd, tmp = tempfile.mkstemp(prefix=f'.{key}.', suffix='.tmp', dir=self.root)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as ex:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            if ex.errno in CAPACITY_ERRNOS:
                raise status.StorageFullException(f'Could not write "{key}": {ex.strerror}') from ex
            raise

        logging.debug(f'Saved "{key}" ({len(value)} bytes) to {path}')

    def remove(self, key: str) -> None:
        path = self.path(key)
        path.unlink(missing_ok=True)
        logging.debug(f'Removed "{key}" from {self.root}')


class MemoryStore(PersistencePort):
    """Keeps slots in a dict.

    Args:
        capacity: Optional limit, in characters, of all stored values combined.
    """

    def __init__(self, capacity: Optional[int] = None) -> None:
        self.capacity = capacity
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(verify_key(key))

    def set(self, key: str, value: str) -> None:
        verify_key(key)
        if self.capacity is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.capacity:
                raise status.StorageFullException(
                    f'Could not write "{key}": {used + len(value)} exceeds {self.capacity}.'
                )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(verify_key(key), None)

    def keys(self) -> List[str]:
        """Return the occupied slot keys."""
        return list(self._data)
