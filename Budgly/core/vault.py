"""Persisted Google Sheets credential and sync configuration.

The vault is a plain slot: it does not check tokens or decide when to refresh
them, that is :mod:`Budgly.core.auth`'s job. An empty slot means "not connected".
"""
import dataclasses
import json
import logging
import threading
from typing import Any, Dict, Optional

from .storage import PersistencePort

VAULT_KEY = 'google_sheets'


@dataclasses.dataclass(frozen=True)
class Credential:
    """OAuth tokens plus the target spreadsheet and auto-sync configuration."""
    access_token: str
    refresh_token: Optional[str] = None
    spreadsheet_id: str = ''
    auto_sync: bool = False
    last_sync: Optional[int] = None  # epoch milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Credential':
        return cls(
            access_token=data.get('access_token') or '',
            refresh_token=data.get('refresh_token') or None,
            spreadsheet_id=data.get('spreadsheet_id') or '',
            auto_sync=bool(data.get('auto_sync', False)),
            last_sync=data.get('last_sync'),
        )


class CredentialVault:
    """Reads and writes the ``google_sheets`` slot.

    Token refreshes and sync stamps happen on worker threads, so read-modify-write
    cycles are serialized with a lock.
    """

    def __init__(self, port: PersistencePort) -> None:
        self._port = port
        self._lock = threading.RLock()

    def get(self) -> Optional[Credential]:
        with self._lock:
            try:
                raw = self._port.get(VAULT_KEY)
                if raw is None:
                    return None
                data = json.loads(raw)
            except ValueError as ex:
                logging.warning(f'Stored credentials are unreadable, treating as disconnected: {ex}')
                return None
            if not isinstance(data, dict):
                logging.warning('Stored credentials are not an object, treating as disconnected.')
                return None
            return Credential.from_dict(data)

    def save(self, credential: Optional[Credential]) -> None:
        """Persist the credential. Saving None disconnects."""
        with self._lock:
            if credential is None:
                self._port.remove(VAULT_KEY)
                logging.debug('Credentials cleared.')
            else:
                self._port.set(VAULT_KEY, json.dumps(credential.to_dict()))

        from ..ui.actions import signals
        signals.connectionChanged.emit()

    def update(self, **changes: Any) -> Optional[Credential]:
        """Apply changes to the stored credential.

        Returns:
            The updated credential, or None if the vault is empty (nothing is written).
        """
        with self._lock:
            credential = self.get()
            if credential is None:
                logging.debug(f'Not connected; ignoring credential update of {sorted(changes)}.')
                return None
            credential = dataclasses.replace(credential, **changes)
            self.save(credential)
            return credential
