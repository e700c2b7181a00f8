"""Composition root.

A :class:`Session` owns one instance of every core service and wires them
together: store mutations feed the sync scheduler and the UI signal hub.
"""
import logging
from typing import Any, Callable, Dict, Optional

from PySide6 import QtCore

from .auth import AUTH_TIMEOUT, TokenLifecycleManager
from .connection import SheetsConnection
from .connectivity import ConnectivityOracle
from .database import RecordStore
from .service import RemoteMirror, build_service
from .storage import FileStore, PersistencePort
from .sync import SYNC_DEBOUNCE_MS, SyncScheduler
from .vault import CredentialVault
from ..settings import lib
from ..status import status


class Session(QtCore.QObject):
    """Builds and holds the core services for one process.

    Args:
        port: Storage for every persisted slot.
        connectivity: Object with an ``is_online()`` method. Defaults to a :class:`ConnectivityOracle`.
        client_config: Parsed OAuth client secret, or None.
        service_factory: Builds a Sheets API client for an access token.
        debounce_ms: Auto-sync debounce interval.
        auth_timeout: Seconds the interactive sign-in may take.
    """

    def __init__(self, port: PersistencePort, connectivity: Any = None,
                 client_config: Optional[Dict[str, Any]] = None,
                 service_factory: Callable[[str], Any] = build_service,
                 debounce_ms: int = SYNC_DEBOUNCE_MS, auth_timeout: int = AUTH_TIMEOUT,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.port = port
        self.connectivity = connectivity if connectivity is not None else ConnectivityOracle(parent=self)

        self.store = RecordStore(port, parent=self)
        self.vault = CredentialVault(port)
        self.settings = lib.SettingsAPI(port)

        self.tokens = TokenLifecycleManager(
            self.vault, self.connectivity, client_config=client_config, timeout_seconds=auth_timeout
        )
        self.mirror = RemoteMirror(self.vault, self.tokens, self.connectivity, service_factory=service_factory)
        self.scheduler = SyncScheduler(self.vault, self.mirror, self.connectivity, interval=debounce_ms, parent=self)
        self.connection = SheetsConnection(self.vault, self.tokens, self.mirror, self.scheduler, self.connectivity)

        self._connect_signals()

    def _connect_signals(self) -> None:
        from ..ui.actions import signals

        self.store.transactionsChanged.connect(self.scheduler.notify)
        self.store.transactionsChanged.connect(signals.transactionsChanged)

    @classmethod
    def from_paths(cls, paths: Optional[lib.ConfigPaths] = None, **kwargs: Any) -> 'Session':
        """Create a session backed by the app data directory.

        A missing or invalid client secret is logged; sign-in then reports the
        provider as unavailable.
        """
        paths = paths or lib.ConfigPaths()

        client_config = kwargs.pop('client_config', None)
        if client_config is None:
            try:
                client_config = lib.load_client_secret(paths.client_secret_path)
            except (status.ClientSecretNotFoundException, status.ClientSecretInvalidException):
                logging.warning('Google Sheets sync is unavailable until a valid client secret is installed.')

        return cls(FileStore(paths.slots_dir), client_config=client_config, **kwargs)

    def sync_now(self) -> None:
        """Push the current transactions immediately."""
        self.connection.sync_now(self.store.records)

    def shutdown(self) -> None:
        """Drop pending work. An in-flight push is waited for."""
        self.scheduler.cancel()
        worker = self.scheduler.state.in_flight
        if worker is not None:
            worker.wait()
