"""Tests for Budgly.core.auth with the Google OAuth flow and token endpoint stubbed."""
from unittest.mock import Mock, patch

import google.auth.exceptions
import google.oauth2.credentials
import google_auth_oauthlib.flow
import requests
from oauthlib.oauth2.rfc6749 import errors as oauth_errors

from Budgly.core.auth import (
    ACCESS_DENIED_MESSAGE,
    AuthorizationRejected,
    TokenLifecycleManager,
    Tokens,
    client_section,
)
from Budgly.core.vault import Credential, CredentialVault
from Budgly.status import status
from Budgly.ui.actions import signals
from tests.base import CLIENT_CONFIG, BaseTestCase, SignalRecorder


def fake_refresh(token='fresh-token', refresh_token=None):
    def refresh(creds, request):
        creds.token = token
        if refresh_token:
            creds._refresh_token = refresh_token

    return refresh


class AuthTestCase(BaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.vault = CredentialVault(self.port)
        self.tokens = TokenLifecycleManager(self.vault, self.connectivity, client_config=CLIENT_CONFIG,
                                            timeout_seconds=5)

    def patch_flow(self, **kwargs):
        patcher = patch.object(google_auth_oauthlib.flow.InstalledAppFlow, 'run_local_server', autospec=True,
                               **kwargs)
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock

    def patch_refresh(self, **kwargs):
        patcher = patch.object(google.oauth2.credentials.Credentials, 'refresh', autospec=True, **kwargs)
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock


class InteractiveAuthTests(AuthTestCase):
    def test_offline(self):
        self.connectivity.online = False
        run = self.patch_flow()
        with self.assertRaises(status.OfflineException):
            self.tokens.authenticate_interactive()
        run.assert_not_called()

    def test_missing_client_config(self):
        tokens = TokenLifecycleManager(self.vault, self.connectivity, client_config=None)
        with self.assertRaises(status.ProviderUnavailableException):
            tokens.authenticate_interactive()

    def test_client_config_without_section(self):
        tokens = TokenLifecycleManager(self.vault, self.connectivity, client_config={'other': {}})
        with self.assertRaises(status.ProviderUnavailableException):
            tokens.authenticate_interactive()

    def test_success_stores_tokens(self):
        run = self.patch_flow(return_value=Mock(token='access-1', refresh_token='refresh-1'))

        result = self.tokens.authenticate_interactive()

        self.assertEqual(result, Tokens('access-1', 'refresh-1'))
        self.assertEqual(self.vault.get(), Credential(access_token='access-1', refresh_token='refresh-1'))
        self.assertEqual(run.call_args.kwargs['prompt'], 'consent')

    def test_reauthentication_keeps_sheet_configuration(self):
        self.vault.save(Credential(access_token='old', refresh_token='old-refresh', spreadsheet_id='sheet',
                                   auto_sync=True, last_sync=42))
        self.patch_flow(return_value=Mock(token='access-2', refresh_token=None))

        self.tokens.authenticate_interactive()

        credential = self.vault.get()
        self.assertEqual(credential.access_token, 'access-2')
        self.assertEqual(credential.refresh_token, 'old-refresh')
        self.assertEqual(credential.spreadsheet_id, 'sheet')
        self.assertTrue(credential.auto_sync)
        self.assertEqual(credential.last_sync, 42)

    def test_access_denied(self):
        self.patch_flow(side_effect=oauth_errors.AccessDeniedError())
        with self.assertRaises(status.AccessDeniedException) as ctx:
            self.tokens.authenticate_interactive()
        self.assertEqual(ctx.exception.detail, ACCESS_DENIED_MESSAGE)
        self.assertIsNone(self.vault.get())

    def test_provider_error_detail(self):
        self.patch_flow(side_effect=oauth_errors.InvalidGrantError(description='Bad Request'))
        with self.assertRaises(status.AccessDeniedException) as ctx:
            self.tokens.authenticate_interactive()
        self.assertEqual(ctx.exception.detail, 'invalid_grant: Bad Request')

    def test_token_endpoint_unreachable(self):
        self.patch_flow(side_effect=requests.exceptions.ConnectionError('Name or service not known'))
        with self.assertRaises(status.ProviderUnavailableException):
            self.tokens.authenticate_interactive()

    def test_no_token_received(self):
        self.patch_flow(return_value=Mock(token=None, refresh_token=None))
        with self.assertRaises(status.AccessDeniedException):
            self.tokens.authenticate_interactive()
        self.assertIsNone(self.vault.get())


class SilentRefreshTests(AuthTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.vault.save(Credential(access_token='old-token', refresh_token='refresh-token', spreadsheet_id='sheet'))

    def test_refresh_persists_new_token(self):
        refresh = self.patch_refresh(side_effect=fake_refresh())

        self.assertEqual(self.tokens.refresh_silently(), 'fresh-token')

        credential = self.vault.get()
        self.assertEqual(credential.access_token, 'fresh-token')
        self.assertEqual(credential.refresh_token, 'refresh-token')
        self.assertEqual(credential.spreadsheet_id, 'sheet')
        creds = refresh.call_args.args[0]
        self.assertEqual(creds.client_id, CLIENT_CONFIG['installed']['client_id'])
        self.assertEqual(creds.refresh_token, 'refresh-token')

    def test_refresh_keeps_rotated_refresh_token(self):
        self.patch_refresh(side_effect=fake_refresh(refresh_token='rotated'))
        self.tokens.refresh_silently()
        self.assertEqual(self.vault.get().refresh_token, 'rotated')

    def test_refresh_error_leaves_vault_untouched(self):
        self.patch_refresh(side_effect=google.auth.exceptions.RefreshError('invalid_grant'))
        before = self.port.get('google_sheets')

        with self.assertRaises(status.RefreshFailedException):
            self.tokens.refresh_silently()
        self.assertEqual(self.port.get('google_sheets'), before)

    def test_refresh_offline(self):
        self.connectivity.online = False
        refresh = self.patch_refresh()
        with self.assertRaises(status.RefreshFailedException):
            self.tokens.refresh_silently()
        refresh.assert_not_called()

    def test_refresh_when_disconnected(self):
        self.vault.save(None)
        with self.assertRaises(status.RefreshFailedException):
            self.tokens.refresh_silently()

    def test_refresh_without_client_config(self):
        tokens = TokenLifecycleManager(self.vault, self.connectivity, client_config=None)
        with self.assertRaises(status.RefreshFailedException):
            tokens.refresh_silently()


class CallAuthorizedTests(AuthTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.vault.save(Credential(access_token='old-token', refresh_token='refresh-token'))
        self.seen = []
        self.auth_requests = SignalRecorder(signals.authenticationRequested)
        self.addCleanup(self.auth_requests.disconnect)

    def request(self, *outcomes):
        outcomes = list(outcomes)

        def send(token):
            self.seen.append(token)
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        return send

    def test_not_authenticated(self):
        self.vault.save(None)
        with self.assertRaises(status.NotAuthenticatedException):
            self.tokens.call_authorized(self.request('ok'))
        self.assertEqual(self.seen, [])

    def test_success_without_refresh(self):
        refresh = self.patch_refresh()
        self.assertEqual(self.tokens.call_authorized(self.request('ok')), 'ok')
        self.assertEqual(self.seen, ['old-token'])
        refresh.assert_not_called()

    def test_rejected_once_then_retried(self):
        self.patch_refresh(side_effect=fake_refresh())

        result = self.tokens.call_authorized(self.request(AuthorizationRejected(), 'ok'))

        self.assertEqual(result, 'ok')
        self.assertEqual(self.seen, ['old-token', 'fresh-token'])
        self.assertEqual(self.vault.get().access_token, 'fresh-token')
        self.assertEqual(self.auth_requests.emissions, [])

    def test_refresh_failure_requires_reauthentication(self):
        self.patch_refresh(side_effect=google.auth.exceptions.RefreshError('invalid_grant'))

        with self.assertRaises(status.ReauthenticationRequiredException) as ctx:
            self.tokens.call_authorized(self.request(AuthorizationRejected(), 'ok'))

        self.assertEqual(self.seen, ['old-token'])
        self.assertEqual(self.vault.get().access_token, 'old-token')
        self.assertEqual(len(self.auth_requests.emissions), 1)
        self.assertIn('Please reconnect your Google account', str(ctx.exception))

    def test_second_rejection_is_not_retried(self):
        refresh = self.patch_refresh(side_effect=fake_refresh())

        with self.assertRaises(status.ReauthenticationRequiredException):
            self.tokens.call_authorized(self.request(AuthorizationRejected(), AuthorizationRejected(), 'ok'))

        self.assertEqual(self.seen, ['old-token', 'fresh-token'])
        self.assertEqual(refresh.call_count, 1)
        self.assertEqual(len(self.auth_requests.emissions), 1)


class ClientSectionTests(BaseTestCase):
    def test_client_section(self):
        self.assertEqual(client_section(CLIENT_CONFIG), CLIENT_CONFIG['installed'])
        self.assertEqual(client_section({'web': {'client_id': 'x'}}), {'client_id': 'x'})
        self.assertIsNone(client_section({}))
        self.assertIsNone(client_section(None))
