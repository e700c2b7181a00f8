"""Settings library for application paths, the OAuth client secret and user preferences.

Provides:
    - ConfigPaths: the application data directory layout.
    - Loading and validation of client_secret.json.
    - SettingsAPI: schema-checked access to the preference slots (payment modes,
      theme, app settings and dashboard layout).

Preference reads never fail: data of an unexpected shape is merged back onto the
defaults. Writes are validated and raise ``TypeError`` or ``ValueError``.
"""

import copy
import datetime
import json
import logging
import pathlib
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from ..core.storage import PersistencePort
from ..status import status

app_name: str = 'Budgly'

PAYMENT_MODES_KEY: str = 'payment_modes'
THEME_KEY: str = 'theme'
SETTINGS_KEY: str = 'settings'
DASHBOARD_LAYOUT_KEY: str = 'dashboard_layout'

THEMES: List[str] = ['light', 'dark']
CARD_TYPES: List[str] = ['stat', 'chart', 'insight']

REQUIRED_CLIENT_SECRET_KEYS: List[str] = ['client_id', 'client_secret', 'auth_uri', 'token_uri']

DEFAULT_PAYMENT_MODES: List[Dict[str, str]] = [
    {'id': '1', 'name': 'Debit Card', 'shorthand': 'D'},
    {'id': '2', 'name': 'Cash', 'shorthand': 'C'},
    {'id': '3', 'name': 'Credit Card', 'shorthand': 'CC'},
]
DEFAULT_THEME: str = 'dark'
DEFAULT_APP_SETTINGS: Dict[str, Any] = {
    'currency': 'PKR',
    'currency_symbol': 'Rs.',
    'privacy_mode': {
        'hide_amounts': False,
        'hide_reasons': False,
    },
}
DEFAULT_DASHBOARD_LAYOUT: Dict[str, Any] = {
    'cards': [],
    'last_updated': '',
}

PAYMENT_MODE_SCHEMA: Dict[str, Any] = {
    'id': {'type': str, 'required': True},
    'name': {'type': str, 'required': True},
    'shorthand': {'type': str, 'required': True},
}

APP_SETTINGS_SCHEMA: Dict[str, Any] = {
    'currency': {'type': str, 'required': True},
    'currency_symbol': {'type': str, 'required': True},
    'privacy_mode': {
        'type': dict,
        'required': False,
        'item_schema': {
            'hide_amounts': {'type': bool, 'required': True},
            'hide_reasons': {'type': bool, 'required': True},
        }
    },
}

DASHBOARD_CARD_SCHEMA: Dict[str, Any] = {
    'id': {'type': str, 'required': True},
    'type': {'type': str, 'required': True, 'allowed_values': CARD_TYPES},
    'order': {'type': int, 'required': True},
    'visible': {'type': bool, 'required': True},
}


def _check_type(value: Any, expected: type) -> bool:
    # bool is an int subclass but never a valid int field
    if expected is int and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def _validate_item(item: Any, schema: Dict[str, Any], label: str, partial: bool = False) -> None:
    """Validate a dict against a field schema.

    Args:
        item: The dict to validate.
        schema: Field name to spec (``type``, ``required``, ``allowed_values``, ``item_schema``).
        label: Used in error messages.
        partial: Skip the required-field check.

    Raises:
        TypeError: If the item or a field has the wrong type.
        ValueError: If a field is missing, unknown or not allowed.
    """
    if not isinstance(item, dict):
        raise TypeError(f'{label} must be a dict, got {type(item).__name__}.')

    unknown = [k for k in item if k not in schema]
    if unknown:
        raise ValueError(f'{label} has unknown fields: {unknown}.')

    for field, specs in schema.items():
        if field not in item:
            if specs.get('required') and not partial:
                raise ValueError(f'{label} is missing required field "{field}".')
            continue

        value = item[field]
        if not _check_type(value, specs['type']):
            raise TypeError(f'{label} field "{field}" must be {specs["type"].__name__}, got {type(value).__name__}.')
        if 'allowed_values' in specs and value not in specs['allowed_values']:
            raise ValueError(f'{label} field "{field}" must be one of {specs["allowed_values"]}, got "{value}".')
        if 'item_schema' in specs:
            _validate_item(value, specs['item_schema'], f'{label} field "{field}"')


def _is_valid(item: Any, schema: Dict[str, Any]) -> bool:
    try:
        _validate_item(item, schema, 'item')
    except (TypeError, ValueError):
        return False
    return True


def _merge(defaults: Dict[str, Any], data: Any, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay the well-typed known fields of ``data`` onto a copy of ``defaults``."""
    merged = copy.deepcopy(defaults)
    if not isinstance(data, dict):
        return merged
    for field, specs in schema.items():
        if field not in data or not _check_type(data[field], specs['type']):
            continue
        if 'item_schema' in specs:
            merged[field] = _merge(defaults.get(field, {}), data[field], specs['item_schema'])
        elif 'allowed_values' not in specs or data[field] in specs['allowed_values']:
            merged[field] = data[field]
    return merged


def _check_unique_ids(items: List[Dict[str, Any]], label: str) -> None:
    ids = [item['id'] for item in items]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValueError(f'{label} ids must be unique, duplicated: {duplicates}.')


def load_client_secret(path: pathlib.Path) -> Dict[str, Any]:
    """Load client_secret.json from disk and validate required OAuth fields.

    Returns:
        The loaded client secret data dictionary.

    Raises:
        status.ClientSecretNotFoundException: If the file is missing.
        status.ClientSecretInvalidException: If JSON parsing fails or required fields are missing.
    """
    path = pathlib.Path(path)
    logging.debug(f'Loading client_secret from "{path}"')
    if not path.exists():
        raise status.ClientSecretNotFoundException(f'File not found: {path}')
    try:
        with path.open('r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)
    except ValueError as ex:
        raise status.ClientSecretInvalidException(f'Could not parse {path}: {ex}') from ex
    validate_client_secret(data)
    return data


def validate_client_secret(data: Any) -> str:
    """Validate that the client configuration contains required OAuth credentials.

    Returns:
        str: Section key used ('installed' or 'web').

    Raises:
        status.ClientSecretInvalidException: If no valid section exists or required fields are missing.
    """
    if not isinstance(data, dict):
        raise status.ClientSecretInvalidException('client_secret must be a JSON object.')

    key = next((k for k in ('installed', 'web') if k in data), None)
    if not key:
        raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

    logging.debug(f'Found "{key}" section in client_secret.')

    config_section = data[key]
    if not isinstance(config_section, dict):
        raise status.ClientSecretInvalidException(f'The \'{key}\' section must be an object.')
    missing: List[str] = [k for k in REQUIRED_CLIENT_SECRET_KEYS if not config_section.get(k)]
    if missing:
        raise status.ClientSecretInvalidException(
            f'Missing required fields in the \'{key}\' section: {missing}.'
        )
    return key


class ConfigPaths:
    """Application file paths.

    Args:
        root: Overrides the application data directory, e.g. for tests or portable installs.
    """

    def __init__(self, root: Optional[pathlib.Path] = None) -> None:
        if root is None:
            QtCore.QCoreApplication.setApplicationName(app_name)
            QtCore.QCoreApplication.setOrganizationName('')
            logging.debug(f'Setting application name: {app_name}')

            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            root = pathlib.Path(p)

        self.app_data_dir: pathlib.Path = pathlib.Path(root)
        logging.debug(f'Using app data directory: {self.app_data_dir}')

        self.config_dir: pathlib.Path = self.app_data_dir / 'config'
        self.slots_dir: pathlib.Path = self.config_dir / 'slots'
        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        for path in (self.config_dir, self.slots_dir):
            if not path.exists():
                logging.debug(f'Creating directory: {path}')
                path.mkdir(parents=True, exist_ok=True)


class SettingsAPI:
    """Reads and writes the preference slots.

    Every successful write emits :attr:`Budgly.ui.actions.signals.settingsChanged`
    with the slot key.
    """

    def __init__(self, port: PersistencePort) -> None:
        self._port = port

    def _read(self, key: str) -> Any:
        try:
            raw = self._port.get(key)
        except UnicodeDecodeError as ex:
            logging.warning(f'Slot "{key}" is not valid UTF-8, using defaults: {ex}')
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            # Values written by older versions may be plain strings
            logging.debug(f'Slot "{key}" is not JSON, using the raw value.')
            return raw

    def _write(self, key: str, value: Any) -> None:
        from ..ui.actions import signals

        self._port.set(key, json.dumps(value, ensure_ascii=False))
        logging.debug(f'Saved settings slot "{key}".')
        signals.settingsChanged.emit(key)

    def payment_modes(self) -> List[Dict[str, str]]:
        data = self._read(PAYMENT_MODES_KEY)
        if not isinstance(data, list):
            if data is not None:
                logging.warning('Stored payment modes are invalid, using defaults.')
            return copy.deepcopy(DEFAULT_PAYMENT_MODES)

        modes = [item for item in data if _is_valid(item, PAYMENT_MODE_SCHEMA)]
        if len(modes) != len(data):
            logging.warning(f'Dropped {len(data) - len(modes)} invalid payment mode(s).')
        return modes

    def set_payment_modes(self, modes: List[Dict[str, str]]) -> None:
        """
        Replace the payment modes.

        Raises:
            TypeError: If modes is not a list of dicts with string fields.
            ValueError: If a field is missing or an id is duplicated.
        """
        if not isinstance(modes, list):
            raise TypeError(f'Payment modes must be a list, got {type(modes).__name__}.')
        for idx, mode in enumerate(modes):
            _validate_item(mode, PAYMENT_MODE_SCHEMA, f'Payment mode #{idx}')
            if not mode['name'].strip() or not mode['shorthand'].strip():
                raise ValueError(f'Payment mode #{idx} must have a name and a shorthand.')
        _check_unique_ids(modes, 'Payment mode')
        self._write(PAYMENT_MODES_KEY, modes)

    def theme(self) -> str:
        return 'light' if self._read(THEME_KEY) == 'light' else DEFAULT_THEME

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f'Theme must be one of {THEMES}, got "{theme}".')
        self._write(THEME_KEY, theme)

    def toggle_theme(self) -> str:
        theme = 'light' if self.theme() == 'dark' else 'dark'
        self.set_theme(theme)
        return theme

    def app_settings(self) -> Dict[str, Any]:
        return _merge(DEFAULT_APP_SETTINGS, self._read(SETTINGS_KEY), APP_SETTINGS_SCHEMA)

    def set_app_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update app settings. Only the given fields change.

        Returns:
            The full settings after the update.

        Raises:
            TypeError: If a field has the wrong type.
            ValueError: If a field is unknown.
        """
        _validate_item(settings, APP_SETTINGS_SCHEMA, 'Settings', partial=True)
        merged = self.app_settings()
        merged.update(copy.deepcopy(settings))
        self._write(SETTINGS_KEY, merged)
        return merged

    def dashboard_layout(self) -> Dict[str, Any]:
        data = self._read(DASHBOARD_LAYOUT_KEY)
        layout = copy.deepcopy(DEFAULT_DASHBOARD_LAYOUT)
        if not isinstance(data, dict):
            return layout

        cards = data.get('cards')
        if isinstance(cards, list):
            layout['cards'] = [c for c in cards if _is_valid(c, DASHBOARD_CARD_SCHEMA)]
        if isinstance(data.get('last_updated'), str):
            layout['last_updated'] = data['last_updated']
        return layout

    def set_dashboard_layout(self, cards: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Replace the dashboard cards and stamp the layout.

        Raises:
            TypeError: If cards is not a list of card dicts.
            ValueError: If a card is invalid or an id is duplicated.
        """
        if not isinstance(cards, list):
            raise TypeError(f'Dashboard cards must be a list, got {type(cards).__name__}.')
        for idx, card in enumerate(cards):
            _validate_item(card, DASHBOARD_CARD_SCHEMA, f'Dashboard card #{idx}')
        _check_unique_ids(cards, 'Dashboard card')

        layout = {
            'cards': copy.deepcopy(cards),
            'last_updated': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        self._write(DASHBOARD_LAYOUT_KEY, layout)
        return layout
