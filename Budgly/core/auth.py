"""
Google OAuth2 token lifecycle.

Provides the interactive consent flow, the silent refresh flow and the
refresh-once guard wrapped around every outbound Sheets request.
"""

import dataclasses
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow
import oauthlib.oauth2.rfc6749.errors
import requests
from PySide6 import QtCore

from .vault import Credential, CredentialVault
from ..status import status

DEFAULT_SCOPES: List[str] = ['https://www.googleapis.com/auth/spreadsheets', ]
GOOGLE_TOKEN_URI: str = 'https://oauth2.googleapis.com/token'

# Seconds to wait for the user to finish signing in
AUTH_TIMEOUT: int = 120

ACCESS_DENIED_MESSAGE: str = (
    'If the app is in testing mode, make sure your email is added as a test user in '
    'Google Cloud Console (OAuth consent screen > Test users).'
)

T = TypeVar('T')


class AuthorizationRejected(Exception):
    """Raised by an outbound request when Google rejects the access token (HTTP 401)."""
    pass


@dataclasses.dataclass(frozen=True)
class Tokens:
    access_token: str
    refresh_token: Optional[str] = None


class AuthFlowWorker(QtCore.QThread):
    """
    Runs the OAuth installed-app flow in a background thread.

    The result is kept on the worker (``creds`` or ``error``) and announced
    through the signals.

    Signals:
        resultReady (object): Emitted with credentials on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, flow: google_auth_oauthlib.flow.InstalledAppFlow, timeout_seconds: int = AUTH_TIMEOUT,
                 parent=None):
        super().__init__(parent)
        self.flow = flow
        self.timeout_seconds = timeout_seconds
        self.creds = None
        self.error: Optional[BaseException] = None

    def run(self):
        logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: starting local server flow')
        try:
            self.creds = self.flow.run_local_server(
                port=0,
                prompt='consent',
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as ex:
            logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: {ex!r}')
            self.error = ex
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(self.creds)


def client_section(client_config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the 'installed' or 'web' section of an OAuth client configuration."""
    if not client_config:
        return None
    key = next((k for k in ('installed', 'web') if k in client_config), None)
    return client_config[key] if key else None


class TokenLifecycleManager:
    """Produces usable access tokens and refreshes them when Google rejects one.

    Args:
        vault: Where tokens are read from and written to.
        connectivity: Object with an ``is_online()`` method.
        client_config: Parsed ``client_secret.json``, or None if not set up.
        scopes: OAuth scopes to request.
        timeout_seconds: How long the interactive flow may wait for the browser.
    """

    def __init__(self, vault: CredentialVault, connectivity: Any, client_config: Optional[Dict[str, Any]] = None,
                 scopes: Optional[List[str]] = None, timeout_seconds: int = AUTH_TIMEOUT) -> None:
        self._vault = vault
        self._connectivity = connectivity
        self._client_config = client_config
        self._scopes = list(scopes or DEFAULT_SCOPES)
        self._timeout_seconds = timeout_seconds

    def authenticate_interactive(self) -> Tokens:
        """
        Ask the user for consent in the browser and store the tokens.

        Returns:
            Tokens: The new access token and, if issued, the refresh token.

        Raises:
            status.OfflineException: If the device is offline.
            status.ProviderUnavailableException: If the OAuth client is not set up or Google is unreachable.
            status.AccessDeniedException: If consent was refused, failed or timed out.
        """
        if not self._connectivity.is_online():
            raise status.OfflineException('Cannot authenticate.')

        flow = self._create_flow()
        creds = self._run_flow(flow)

        tokens = Tokens(access_token=creds.token, refresh_token=getattr(creds, 'refresh_token', None))
        credential = self._vault.get()
        if credential is None:
            credential = Credential(access_token=tokens.access_token, refresh_token=tokens.refresh_token)
        else:
            credential = dataclasses.replace(
                credential,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or credential.refresh_token,
            )
        self._vault.save(credential)
        logging.info('Authenticated with Google.')
        return tokens

    def refresh_silently(self) -> str:
        """
        Get a new access token with the stored refresh token, without user interaction.

        Returns:
            str: The new access token, also saved to the vault.

        Raises:
            status.RefreshFailedException: If no token could be obtained. The vault is left untouched.
        """
        credential = self._vault.get()
        if credential is None:
            raise status.RefreshFailedException('Not connected.')
        if not self._connectivity.is_online():
            raise status.RefreshFailedException('Device is offline.')

        section = client_section(self._client_config)
        if not section:
            raise status.RefreshFailedException('No OAuth client configuration.')

        creds = google.oauth2.credentials.Credentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=section.get('token_uri') or GOOGLE_TOKEN_URI,
            client_id=section.get('client_id'),
            client_secret=section.get('client_secret'),
            scopes=self._scopes,
        )

        logging.debug('Refreshing access token...')
        try:
            creds.refresh(google.auth.transport.requests.Request())
        except google.auth.exceptions.GoogleAuthError as ex:
            raise status.RefreshFailedException(f'Token refresh failed: {ex}') from ex

        if not creds.token:
            raise status.RefreshFailedException('No access token received during refresh.')

        self._vault.update(
            access_token=creds.token,
            refresh_token=creds.refresh_token or credential.refresh_token,
        )
        logging.debug('Access token refreshed.')
        return creds.token

    def call_authorized(self, request: Callable[[str], T]) -> T:
        """
        Call ``request`` with the current access token, refreshing at most once.

        ``request`` must raise :class:`AuthorizationRejected` when Google answers
        401. The first rejection triggers one silent refresh and one retry.

        Raises:
            status.NotAuthenticatedException: If there is no access token.
            status.ReauthenticationRequiredException: If the refresh fails or the retry is rejected too.
        """
        credential = self._vault.get()
        if credential is None or not credential.access_token:
            raise status.NotAuthenticatedException

        try:
            return request(credential.access_token)
        except AuthorizationRejected:
            logging.debug('Access token rejected; attempting a silent refresh.')

        try:
            token = self._refresh_for_retry()
            return request(token)
        except AuthorizationRejected as ex:
            self._request_authentication()
            raise status.ReauthenticationRequiredException('The refreshed token was rejected.') from ex

    def _refresh_for_retry(self) -> str:
        try:
            return self.refresh_silently()
        except status.RefreshFailedException as ex:
            self._request_authentication()
            raise status.ReauthenticationRequiredException(ex.detail) from ex

    def _request_authentication(self) -> None:
        from ..ui.actions import signals
        signals.authenticationRequested.emit()

    def _create_flow(self) -> google_auth_oauthlib.flow.InstalledAppFlow:
        if not client_section(self._client_config):
            raise status.ProviderUnavailableException('No OAuth client configuration found.')
        try:
            return google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(
                self._client_config, scopes=self._scopes)
        except ValueError as ex:
            raise status.ProviderUnavailableException(f'Invalid OAuth client configuration: {ex}') from ex

    def _run_flow(self, flow: google_auth_oauthlib.flow.InstalledAppFlow) -> Any:
        """Run the flow on a worker thread while an event loop waits for it."""
        worker = AuthFlowWorker(flow, timeout_seconds=self._timeout_seconds)
        loop = QtCore.QEventLoop()
        worker.finished.connect(loop.quit)

        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)
        # The local server gives up on its own; the timer is a backstop
        timer.start((self._timeout_seconds + 5) * 1000)

        logging.debug('Starting OAuth flow...')
        worker.start()
        loop.exec()
        timer.stop()

        if worker.isRunning():
            worker.terminate()
            worker.wait()
            raise status.AccessDeniedException('OAuth flow timed out (no response from browser).')
        worker.wait()

        error = worker.error
        if isinstance(error, oauthlib.oauth2.rfc6749.errors.AccessDeniedError):
            raise status.AccessDeniedException(ACCESS_DENIED_MESSAGE) from error
        if isinstance(error, oauthlib.oauth2.rfc6749.errors.OAuth2Error):
            detail = f'{error.error}: {error.description}' if error.description else error.error
            raise status.AccessDeniedException(detail) from error
        if isinstance(error, requests.exceptions.ConnectionError):
            raise status.ProviderUnavailableException(f'Could not reach Google: {error}') from error
        if error is not None:
            raise status.AccessDeniedException(f'OAuth flow failed: {error}') from error

        creds = worker.creds
        if not creds or not creds.token:
            raise status.AccessDeniedException('Authentication was cancelled or no access token received.')
        logging.debug('OAuth flow completed.')
        return creds
