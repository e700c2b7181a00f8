"""
Local transaction store.

Transactions are kept as one JSON array in the ``transactions`` slot of a
:class:`~Budgly.core.storage.PersistencePort`, newest-first by insertion. Every
mutation reads the stored sequence, computes the new one and writes it back as a
whole before returning it.

Corrupted data never stops the app from starting: an unreadable slot is cleared
and records that fail validation are dropped. Running out of storage is the one
error that is always raised, as the entry would otherwise be lost.
"""

import dataclasses
import datetime
import enum
import json
import logging
import math
import uuid
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd
from PySide6 import QtCore

from .storage import PersistencePort

TRANSACTIONS_KEY = 'transactions'

RECORD_COLUMNS: List[str] = ['id', 'date', 'description', 'amount', 'payment_mode', 'kind', 'necessity']


class Kind(enum.StrEnum):
    """Closed set of transaction kinds."""
    Expense = 'expense'
    Income = 'income'


class Necessity(enum.StrEnum):
    """Necessity tags available for expenses."""
    Need = 'need'
    Want = 'want'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime.datetime:
    """Parse an ISO 8601 date or date-time string.

    Raises:
        ValueError: If the value is not a string or cannot be parsed.
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f'Timestamp must be a non-empty string, got {value!r}.')
    return datetime.datetime.fromisoformat(value)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclasses.dataclass(frozen=True)
class TransactionRecord:
    """One expense or income entry."""
    id: str
    date: str
    description: str
    amount: float
    payment_mode: str
    kind: Kind = Kind.Expense
    necessity: Optional[Necessity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'date': self.date,
            'description': self.description,
            'amount': self.amount,
            'payment_mode': self.payment_mode,
            'kind': self.kind.value,
            'necessity': self.necessity.value if self.necessity else None,
        }


def _parse_kind(value: Any) -> Kind:
    if value is None:
        return Kind.Expense
    try:
        return Kind(value)
    except ValueError:
        raise ValueError(f'Unknown transaction kind {value!r}; expected one of {[k.value for k in Kind]}.') from None


def _parse_necessity(value: Any, kind: Kind) -> Optional[Necessity]:
    if value in (None, ''):
        return None
    try:
        necessity = Necessity(value)
    except ValueError:
        raise ValueError(f'Unknown necessity {value!r}; expected one of {[n.value for n in Necessity]}.') from None
    # Income is never tagged
    return necessity if kind == Kind.Expense else None


def record_from_dict(data: Any) -> TransactionRecord:
    """Build a record from its stored form.

    Raises:
        ValueError: If the data breaks the record invariant.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f'Record must be an object, got {type(data).__name__}.')

    record_id = data.get('id')
    if not isinstance(record_id, str) or not record_id:
        raise ValueError('Record has no identifier.')

    amount = data.get('amount')
    if not is_number(amount):
        raise ValueError(f'Record "{record_id}" has a non-numeric amount {amount!r}.')

    date = data.get('date')
    parse_timestamp(date)

    kind = _parse_kind(data.get('kind'))

    return TransactionRecord(
        id=record_id,
        date=date,
        description=str(data.get('description') or ''),
        amount=amount,
        payment_mode=str(data.get('payment_mode') or ''),
        kind=kind,
        necessity=_parse_necessity(data.get('necessity'), kind),
    )


def records_to_frame(records: List[TransactionRecord]) -> pd.DataFrame:
    """Return the records as a DataFrame with :data:`RECORD_COLUMNS`, in store order."""
    return pd.DataFrame([r.to_dict() for r in records], columns=RECORD_COLUMNS)


class RecordStore(QtCore.QObject):
    """Durable, ordered collection of transaction records.

    Signals:
        transactionsChanged (list): Emitted with the full sequence after each mutation.
    """
    transactionsChanged = QtCore.Signal(list)

    def __init__(self, port: PersistencePort, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._port = port
        self._records: List[TransactionRecord] = self.load()

    @property
    def records(self) -> List[TransactionRecord]:
        """The sequence as of the last successful load or write."""
        return list(self._records)

    def load(self) -> List[TransactionRecord]:
        """Read the persisted sequence.

        Returns:
            The valid records, newest first. Never raises on bad data.
        """
        try:
            raw = self._port.get(TRANSACTIONS_KEY)
            if raw is None:
                self._records = []
                return []
            data = json.loads(raw)
        except (TypeError, ValueError) as ex:
            logging.warning(f'Stored transactions are corrupted, resetting: {ex}')
            self._reset_slot()
            return []

        if not isinstance(data, list):
            logging.warning(f'Stored transactions are a {type(data).__name__}, not a list, resetting.')
            self._reset_slot()
            return []

        records: List[TransactionRecord] = []
        for item in data:
            try:
                records.append(record_from_dict(item))
            except ValueError as ex:
                logging.debug(f'Dropping invalid transaction: {ex}')

        if len(records) != len(data):
            logging.warning(f'Dropped {len(data) - len(records)} invalid transaction(s) of {len(data)}.')

        self._records = records
        return list(records)

    def add(self, entry: Mapping[str, Any]) -> List[TransactionRecord]:
        """Assign a new identifier to the entry and prepend it.

        Args:
            entry: Record fields without an identifier. ``date`` defaults to now.

        Returns:
            The full updated sequence; the new record is first.

        Raises:
            ValueError: If the entry is not a valid positive-amount record.
            status.StorageFullException: If it could not be persisted.
        """
        fields = dict(entry)
        fields['id'] = str(uuid.uuid4())
        fields.setdefault('date', now_str())

        record = record_from_dict(fields)
        if record.amount <= 0:
            raise ValueError(f'Amount must be positive, got {record.amount}.')

        records = [record] + self.load()
        self._write(records)
        logging.debug(f'Added transaction "{record.id}" ({record.kind}, {record.amount}).')
        return list(records)

    def remove(self, record_id: str) -> List[TransactionRecord]:
        """Remove the record with the given identifier, if present."""
        current = self.load()
        records = [r for r in current if r.id != record_id]
        if len(records) == len(current):
            logging.debug(f'Transaction "{record_id}" not found, nothing to remove.')
        self._write(records)
        return list(records)

    def update(self, record_id: str, changes: Mapping[str, Any]) -> List[TransactionRecord]:
        """Merge changes into the record with the given identifier, if present.

        Raises:
            ValueError: If the changes would change the identifier or break the record invariant.
        """
        if 'id' in changes and changes['id'] != record_id:
            raise ValueError('The identifier of a transaction cannot be changed.')

        records = []
        for record in self.load():
            if record.id == record_id:
                merged = record_from_dict({**record.to_dict(), **changes})
                if merged.amount <= 0:
                    raise ValueError(f'Amount must be positive, got {merged.amount}.')
                record = merged
            records.append(record)

        self._write(records)
        return list(records)

    def _write(self, records: List[TransactionRecord]) -> None:
        # StorageFullException propagates before the in-memory sequence changes
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False)
        self._port.set(TRANSACTIONS_KEY, payload)
        self._records = list(records)
        self.transactionsChanged.emit(list(records))

    def _reset_slot(self) -> None:
        self._records = []
        try:
            self._port.remove(TRANSACTIONS_KEY)
        except OSError as ex:
            logging.error(f'Failed to clear corrupted transactions: {ex}')
