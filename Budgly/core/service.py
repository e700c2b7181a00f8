"""Google Sheets mirror.

Writes the full transaction history to the ``Transactions`` worksheet of the
configured spreadsheet. Each push overwrites the range starting at ``A1`` with a
header row followed by one row per record; nothing is appended or diffed.

All requests go through :meth:`TokenLifecycleManager.call_authorized
<Budgly.core.auth.TokenLifecycleManager.call_authorized>`, so a rejected token is
refreshed once and the request retried once.
"""

import json
import logging
import re
from typing import Any, Callable, List, Optional, Sequence

import google.oauth2.credentials
import google_auth_httplib2
import httplib2
import pandas as pd
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .auth import AuthorizationRejected, TokenLifecycleManager
from .database import TransactionRecord, parse_timestamp, records_to_frame
from .vault import CredentialVault
from ..status import status

# Seconds before an HTTP request is abandoned
HTTP_TIMEOUT: int = 30

WORKSHEET_NAME: str = 'Transactions'
HEADERS: List[str] = ['date', 'description', 'amount', 'payment_mode', 'kind', 'necessity']

SHEET_ID_PATTERN = re.compile(r'/spreadsheets/d/([a-zA-Z0-9_-]+)')

# Errors raised by the transport when Google cannot be reached
TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error)


def build_service(token: str, timeout: int = HTTP_TIMEOUT) -> Any:
    """
    Builds a Sheets API client that sends the given bearer token.

    The transport does not refresh tokens itself; a 401 surfaces as an
    :class:`HttpError` for the caller to handle.

    Args:
        token: OAuth access token.
        timeout: Socket timeout in seconds.

    Returns:
        The Sheets API Resource.
    """
    creds = google.oauth2.credentials.Credentials(token=token)
    http = google_auth_httplib2.AuthorizedHttp(
        creds,
        http=httplib2.Http(timeout=timeout),
        refresh_status_codes=(),
    )
    return build('sheets', 'v4', http=http, cache_discovery=False)


def idx_to_col(idx: int) -> str:
    """Convert zero-based column index to spreadsheet letter(s).

    Args:
        idx: The zero-based column index.

    Returns:
        The spreadsheet column letter(s) (e.g., A, B, AA).
    """
    letters = ''
    while idx >= 0:
        letters = chr((idx % 26) + ord('A')) + letters
        idx = idx // 26 - 1
    return letters


def extract_sheet_id(url: str) -> Optional[str]:
    """Return the spreadsheet id from a Google Sheets URL, or None."""
    if not isinstance(url, str):
        return None
    match = SHEET_ID_PATTERN.search(url)
    return match.group(1) if match else None


def validate_sheet_url(url: str) -> bool:
    return extract_sheet_id(url) is not None


def format_date(value: str) -> str:
    """Format an ISO 8601 timestamp as ``DD/MM/YYYY`` in local time."""
    dt = parse_timestamp(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime('%d/%m/%Y')


def format_amount(value: float) -> str:
    """Shortest decimal form of an amount: ``100``, ``12.5``."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def prepare_values(records: Sequence[TransactionRecord]) -> List[List[str]]:
    """
    Serializes records into sheet rows.

    Returns:
        A header row followed by one row per record, in store order.
    """
    df = records_to_frame(list(records))
    if df.empty:
        return [list(HEADERS)]

    rows = pd.DataFrame({
        'date': df['date'].map(format_date),
        'description': df['description'].astype(str),
        'amount': df['amount'].map(format_amount),
        'payment_mode': df['payment_mode'].astype(str),
        'kind': df['kind'].astype(str),
        'necessity': df['necessity'].fillna('').astype(str),
    }, columns=HEADERS)
    return [list(HEADERS)] + rows.values.tolist()


def target_range(values: List[List[str]], worksheet: str = WORKSHEET_NAME) -> str:
    """A1 range covering exactly the serialized rows, e.g. ``Transactions!A1:F3``."""
    return f'{worksheet}!A1:{idx_to_col(len(HEADERS) - 1)}{len(values)}'


def error_message(ex: HttpError) -> str:
    """Return the message Google sent with an error response."""
    try:
        content = ex.content.decode('utf-8') if isinstance(ex.content, bytes) else ex.content
        data = json.loads(content)
        message = data.get('error', {}).get('message')
        if message:
            return message
    except (AttributeError, TypeError, ValueError):
        pass
    return getattr(ex, 'reason', None) or str(ex)


def _http_status(ex: HttpError) -> Optional[int]:
    return ex.resp.status if ex.resp else None


class RemoteMirror:
    """Pushes the transaction history to the configured spreadsheet.

    Args:
        vault: Holds the target spreadsheet id.
        tokens: Supplies access tokens and the refresh-once guard.
        connectivity: Object with an ``is_online()`` method.
        service_factory: Builds a Sheets API client for an access token.
        worksheet: Name of the worksheet written to.
    """

    def __init__(self, vault: CredentialVault, tokens: TokenLifecycleManager, connectivity: Any,
                 service_factory: Callable[[str], Any] = build_service, worksheet: str = WORKSHEET_NAME) -> None:
        self._vault = vault
        self._tokens = tokens
        self._connectivity = connectivity
        self._service_factory = service_factory
        self.worksheet = worksheet

    def _execute(self, make_request: Callable[[Any], Any]) -> Callable[[str], Any]:
        """Wraps a request builder into a callable for ``call_authorized``."""

        def request(token: str) -> Any:
            service = self._service_factory(token)
            try:
                return make_request(service).execute()
            except HttpError as ex:
                if _http_status(ex) == 401:
                    raise AuthorizationRejected(error_message(ex)) from ex
                raise

        return request

    def push(self, records: Sequence[TransactionRecord]) -> None:
        """
        Overwrites the remote worksheet with the given records.

        Returns silently without a request when the device is offline.

        Raises:
            status.SpreadsheetIdNotConfiguredException: If no spreadsheet is configured.
            status.NotAuthenticatedException: If there is no access token.
            status.ReauthenticationRequiredException: If the token was rejected and could not be renewed.
            status.SyncFailedException: If Google refused the write or could not be reached.
        """
        if not self._connectivity.is_online():
            logging.debug('Device is offline, skipping push.')
            return

        credential = self._vault.get()
        if credential is None or not credential.spreadsheet_id:
            raise status.SpreadsheetIdNotConfiguredException
        spreadsheet_id = credential.spreadsheet_id

        values = prepare_values(records)
        range_ = target_range(values, self.worksheet)

        logging.debug(f'Pushing {len(values) - 1} transaction(s) to "{spreadsheet_id}" ({range_})...')
        try:
            self._tokens.call_authorized(self._execute(
                lambda service: service.spreadsheets().values().update(
                    spreadsheetId=spreadsheet_id,
                    range=range_,
                    valueInputOption='RAW',
                    body={'values': values},
                )
            ))
        except HttpError as ex:
            raise status.SyncFailedException(error_message(ex)) from ex
        except TRANSPORT_ERRORS as ex:
            raise status.SyncFailedException(f'Could not reach Google Sheets: {ex}') from ex

        logging.info(f'Pushed {len(values) - 1} transaction(s) to Google Sheets.')

    def create_sheet(self, title: str) -> str:
        """
        Creates a new spreadsheet with a ``Transactions`` worksheet.

        Returns:
            str: The id of the new spreadsheet.

        Raises:
            status.OfflineException: If the device is offline.
            status.SyncFailedException: If Google refused the request or could not be reached.
        """
        if not self._connectivity.is_online():
            raise status.OfflineException('Cannot create sheet.')

        body = {
            'properties': {'title': title},
            'sheets': [{'properties': {'title': self.worksheet}}],
        }
        try:
            result = self._tokens.call_authorized(self._execute(
                lambda service: service.spreadsheets().create(body=body, fields='spreadsheetId')
            ))
        except HttpError as ex:
            raise status.SyncFailedException(error_message(ex)) from ex
        except TRANSPORT_ERRORS as ex:
            raise status.SyncFailedException(f'Could not reach Google Sheets: {ex}') from ex

        spreadsheet_id = (result or {}).get('spreadsheetId')
        if not spreadsheet_id:
            raise status.SyncFailedException('Google did not return a spreadsheet id.')
        logging.info(f'Created spreadsheet "{title}" ({spreadsheet_id}).')
        return spreadsheet_id

    def verify_sheet_access(self, spreadsheet_id: str) -> bool:
        """Return True if the spreadsheet can be read with the current token. Never raises."""
        if not self._connectivity.is_online():
            return False

        try:
            self._tokens.call_authorized(self._execute(
                lambda service: service.spreadsheets().get(spreadsheetId=spreadsheet_id, fields='spreadsheetId')
            ))
        except HttpError as ex:
            logging.debug(f'No access to spreadsheet "{spreadsheet_id}" (HTTP {_http_status(ex)}).')
            return False
        except (status.BaseStatusException, *TRANSPORT_ERRORS) as ex:
            logging.debug(f'Could not verify spreadsheet "{spreadsheet_id}": {ex}')
            return False

        logging.debug(f'Access confirmed for spreadsheet "{spreadsheet_id}".')
        return True
