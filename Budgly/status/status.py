"""Status definitions and exceptions for Budgly.

This module provides:
    - Status: enumeration of possible store, authentication and sync states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: message lookup with a fallback
    - BaseStatusException: base exception that logs itself and keeps the provider detail
    - Specific exceptions (e.g., StorageFullException) raised by the core services
"""
import enum
import logging
from typing import Dict, Optional


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()

    # Local storage
    StorageFull = enum.auto()

    # OAuth client configuration
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()

    # Authentication
    Offline = enum.auto()
    ProviderUnavailable = enum.auto()
    AccessDenied = enum.auto()
    RefreshFailed = enum.auto()
    ReauthenticationRequired = enum.auto()
    NotAuthenticated = enum.auto()

    # Spreadsheet
    SpreadsheetIdNotConfigured = enum.auto()
    SpreadsheetNotFound = enum.auto()

    # Sync
    SyncFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status.',

    Status.StorageFull: 'Device storage is full. The transaction was not saved.',

    Status.ClientSecretNotFound: 'Could not find the Google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',

    Status.Offline: 'Device is offline.',
    Status.ProviderUnavailable: 'Google sign-in is unavailable.',
    Status.AccessDenied: 'Google denied access.',
    Status.RefreshFailed: 'Could not refresh the Google access token.',
    Status.ReauthenticationRequired: 'Authentication expired. Please reconnect your Google account.',
    Status.NotAuthenticated: 'Not authenticated. Please connect your Google account.',

    Status.SpreadsheetIdNotConfigured: 'No sheet configured. Please set up Google Sheets sync.',
    Status.SpreadsheetNotFound: 'Could not access the spreadsheet. Check the URL and sharing settings.',

    Status.SyncFailed: 'Failed to sync transactions.',
}


def get_message(status: Status) -> str:
    """Returns the user-facing message for ``status``."""
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in Budgly.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        detail (str): Additional context, e.g. the error text returned by Google.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: Optional[str] = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)


class StorageFullException(BaseStatusException):
    """Exception raised when the persistence layer has run out of capacity."""
    status = Status.StorageFull


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class OfflineException(BaseStatusException):
    """Exception raised when a network operation is attempted while offline."""
    status = Status.Offline


class ProviderUnavailableException(BaseStatusException):
    """Exception raised when the identity provider cannot be set up or reached."""
    status = Status.ProviderUnavailable


class AccessDeniedException(BaseStatusException):
    """Exception raised when the user or Google refuses the consent request."""
    status = Status.AccessDenied


class RefreshFailedException(BaseStatusException):
    """Exception raised when a silent token refresh does not produce a new token."""
    status = Status.RefreshFailed


class ReauthenticationRequiredException(BaseStatusException):
    """Exception raised when the access token was rejected and could not be renewed."""
    status = Status.ReauthenticationRequired


class NotAuthenticatedException(BaseStatusException):
    """Exception raised when there is no access token to send."""
    status = Status.NotAuthenticated


class SpreadsheetIdNotConfiguredException(BaseStatusException):
    """Exception raised when no target spreadsheet has been configured."""
    status = Status.SpreadsheetIdNotConfigured


class SpreadsheetNotFoundException(BaseStatusException):
    """Exception raised when the specified spreadsheet cannot be accessed."""
    status = Status.SpreadsheetNotFound


class SyncFailedException(BaseStatusException):
    """Exception raised when Google rejects a request for a reason other than authorization."""
    status = Status.SyncFailed
