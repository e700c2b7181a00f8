"""Google Sheets connection management.

:class:`SheetsConnection` is what the settings UI drives: sign in, pick or create
the target spreadsheet, toggle auto-sync, sync manually and disconnect.
"""
import dataclasses
import logging
import re
from typing import Any, Optional, Sequence

from .auth import TokenLifecycleManager, Tokens
from .database import TransactionRecord
from .service import RemoteMirror, extract_sheet_id
from .sync import SyncScheduler
from .vault import CredentialVault
from ..status import status

DEFAULT_SHEET_TITLE: str = 'Budgly Transactions'

BARE_SHEET_ID_PATTERN = re.compile(r'[a-zA-Z0-9_-]+')


@dataclasses.dataclass(frozen=True)
class ConnectionStatus:
    authenticated: bool = False
    connected: bool = False
    auto_sync: bool = False
    spreadsheet_id: Optional[str] = None
    last_sync: Optional[int] = None
    online: bool = True


class SheetsConnection:
    """Connects the local store to a Google spreadsheet."""

    def __init__(self, vault: CredentialVault, tokens: TokenLifecycleManager, mirror: RemoteMirror,
                 scheduler: SyncScheduler, connectivity: Any) -> None:
        self._vault = vault
        self._tokens = tokens
        self._mirror = mirror
        self._scheduler = scheduler
        self._connectivity = connectivity

    def status(self) -> ConnectionStatus:
        credential = self._vault.get()
        online = self._connectivity.is_online()
        if credential is None:
            return ConnectionStatus(online=online)
        return ConnectionStatus(
            authenticated=bool(credential.access_token),
            connected=bool(credential.access_token and credential.spreadsheet_id),
            auto_sync=credential.auto_sync,
            spreadsheet_id=credential.spreadsheet_id or None,
            last_sync=credential.last_sync,
            online=online,
        )

    def authenticate(self) -> Tokens:
        """Run the interactive Google sign-in. See :meth:`TokenLifecycleManager.authenticate_interactive`."""
        return self._tokens.authenticate_interactive()

    def connect_sheet(self, url_or_id: str) -> str:
        """
        Use an existing spreadsheet as the sync target.

        Args:
            url_or_id: A Google Sheets URL or a bare spreadsheet id.

        Returns:
            str: The spreadsheet id.

        Raises:
            status.NotAuthenticatedException: If not signed in.
            status.SpreadsheetNotFoundException: If the value is not a sheet URL or the sheet is not accessible.
        """
        self._require_authenticated()

        value = (url_or_id or '').strip()
        spreadsheet_id = extract_sheet_id(value)
        if spreadsheet_id is None and BARE_SHEET_ID_PATTERN.fullmatch(value):
            spreadsheet_id = value
        if not spreadsheet_id:
            raise status.SpreadsheetNotFoundException(f'"{url_or_id}" is not a valid Google Sheets URL.')

        if not self._mirror.verify_sheet_access(spreadsheet_id):
            raise status.SpreadsheetNotFoundException(f'Cannot access spreadsheet "{spreadsheet_id}".')

        self._vault.update(spreadsheet_id=spreadsheet_id)
        logging.info(f'Connected to spreadsheet "{spreadsheet_id}".')
        return spreadsheet_id

    def create_sheet(self, title: str = DEFAULT_SHEET_TITLE) -> str:
        """Create a new spreadsheet and use it as the sync target."""
        self._require_authenticated()
        spreadsheet_id = self._mirror.create_sheet(title)
        self._vault.update(spreadsheet_id=spreadsheet_id)
        return spreadsheet_id

    def set_auto_sync(self, enabled: bool) -> None:
        if self._vault.update(auto_sync=bool(enabled)) is None:
            raise status.NotAuthenticatedException
        if not enabled:
            self._scheduler.cancel()
        logging.debug(f'Auto-sync {"enabled" if enabled else "disabled"}.')

    def disconnect(self) -> None:
        """Forget the tokens and the target spreadsheet. Local transactions are kept."""
        self._scheduler.cancel()
        self._vault.save(None)
        logging.info('Disconnected from Google Sheets.')

    def sync_now(self, records: Sequence[TransactionRecord]) -> None:
        """Push immediately and wait. See :meth:`SyncScheduler.sync_now`."""
        self._scheduler.sync_now(records)

    def _require_authenticated(self) -> None:
        credential = self._vault.get()
        if credential is None or not credential.access_token:
            raise status.NotAuthenticatedException
