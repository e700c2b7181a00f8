"""
Tests for Budgly.core.database: durability, ordering, validation and
recovery from corrupted persisted data.
"""
import json
import random
import uuid

import pandas as pd

from Budgly.core.database import (
    RECORD_COLUMNS,
    TRANSACTIONS_KEY,
    Kind,
    Necessity,
    RecordStore,
    TransactionRecord,
    record_from_dict,
    records_to_frame,
)
from Budgly.core.storage import FileStore, MemoryStore
from Budgly.status import status
from tests.base import BaseTestCase, SignalRecorder, entry


def raw(record_id='r1', **fields):
    data = {
        'id': record_id,
        'date': '2025-01-01T09:00:00+00:00',
        'description': 'Coffee',
        'amount': 4.5,
        'payment_mode': 'Cash',
        'kind': 'expense',
        'necessity': 'want',
    }
    data.update(fields)
    return data


class RecordStoreTests(BaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = RecordStore(self.port)

    def restart(self) -> RecordStore:
        return RecordStore(self.port)

    def test_empty_slot_loads_empty(self):
        self.assertEqual(self.store.load(), [])
        self.assertEqual(self.store.records, [])

    def test_add_prepends(self):
        self.store.add(entry(description='first'))
        records = self.store.add(entry(description='second'))

        self.assertEqual([r.description for r in records], ['second', 'first'])
        self.assertEqual(self.store.load()[0].description, 'second')

    def test_add_assigns_fresh_id(self):
        records = self.store.add(entry(id='caller-id'))
        self.assertNotEqual(records[0].id, 'caller-id')
        uuid.UUID(records[0].id)

    def test_add_defaults_date_to_now(self):
        data = entry()
        del data['date']
        record = self.store.add(data)[0]
        self.assertTrue(record.date)
        self.assertIn('+00:00', record.date)

    def test_add_rejects_non_positive_amount(self):
        for amount in (0, -5):
            with self.subTest(amount=amount):
                with self.assertRaises(ValueError):
                    self.store.add(entry(amount=amount))
        self.assertEqual(self.store.load(), [])

    def test_add_rejects_unknown_kind(self):
        with self.assertRaises(ValueError):
            self.store.add(entry(kind='savings'))
        self.assertEqual(self.store.load(), [])

    def test_add_rejects_non_numeric_amount(self):
        for amount in ('100', None, True, float('nan')):
            with self.subTest(amount=amount):
                with self.assertRaises(ValueError):
                    self.store.add(entry(amount=amount))

    def test_income_drops_necessity(self):
        record = self.store.add(entry(kind='income', necessity='need'))[0]
        self.assertEqual(record.kind, Kind.Income)
        self.assertIsNone(record.necessity)

    def test_remove(self):
        records = self.store.add(entry(description='keep'))
        records = self.store.add(entry(description='drop'))
        drop_id = records[0].id

        records = self.store.remove(drop_id)
        self.assertEqual([r.description for r in records], ['keep'])
        self.assertEqual([r.description for r in self.restart().load()], ['keep'])

    def test_remove_missing_id_is_noop(self):
        self.store.add(entry(description='a'))
        before = self.store.add(entry(description='b'))

        after = self.store.remove('does-not-exist')
        self.assertEqual(after, before)
        self.assertEqual(self.store.load(), before)

    def test_update_merges_fields(self):
        record = self.store.add(entry(amount=10))[0]
        records = self.store.update(record.id, {'amount': 12.5, 'description': 'Lunch'})

        self.assertEqual(records[0].id, record.id)
        self.assertEqual(records[0].amount, 12.5)
        self.assertEqual(records[0].description, 'Lunch')
        self.assertEqual(records[0].payment_mode, record.payment_mode)

    def test_update_keeps_position(self):
        self.store.add(entry(description='older'))
        newer = self.store.add(entry(description='newer'))
        older_id = newer[1].id

        records = self.store.update(older_id, {'description': 'edited'})
        self.assertEqual([r.description for r in records], ['newer', 'edited'])

    def test_update_cannot_change_id(self):
        record = self.store.add(entry())[0]
        with self.assertRaises(ValueError):
            self.store.update(record.id, {'id': 'other'})

    def test_update_invalid_value_writes_nothing(self):
        record = self.store.add(entry(amount=10))[0]
        stored = self.port.get(TRANSACTIONS_KEY)

        for changes in ({'amount': -1}, {'amount': 'ten'}, {'kind': 'savings'}, {'date': 'yesterday'}):
            with self.subTest(changes=changes):
                with self.assertRaises(ValueError):
                    self.store.update(record.id, changes)
        self.assertEqual(self.port.get(TRANSACTIONS_KEY), stored)

    def test_update_missing_id_is_noop(self):
        before = self.store.add(entry())
        self.assertEqual(self.store.update('nope', {'amount': 1}), before)

    def test_durability_across_restart(self):
        rng = random.Random(7)
        expected = []
        for i in range(30):
            op = rng.choice(['add', 'add', 'remove', 'update'])
            if op == 'add' or not expected:
                expected = self.store.add(entry(amount=i + 1, description=f'item {i}'))
            elif op == 'remove':
                expected = self.store.remove(rng.choice(expected).id)
            else:
                expected = self.store.update(rng.choice(expected).id, {'amount': i + 0.25})

        self.assertEqual(self.restart().load(), expected)

    def test_mutations_emit_full_sequence(self):
        recorder = SignalRecorder(self.store.transactionsChanged)
        records = self.store.add(entry())
        self.store.remove(records[0].id)

        self.assertEqual(len(recorder.emissions), 2)
        self.assertEqual(recorder.emissions[0][0], records)
        self.assertEqual(recorder.emissions[1][0], [])

    def test_corrupted_json_resets_slot(self):
        self.port.set(TRANSACTIONS_KEY, 'not json')
        self.assertEqual(self.restart().load(), [])
        self.assertIsNone(self.port.get(TRANSACTIONS_KEY))

    def test_object_instead_of_array_resets_slot(self):
        self.port.set(TRANSACTIONS_KEY, json.dumps({'id': 'r1', 'amount': 5}))
        self.assertEqual(self.restart().load(), [])
        self.assertIsNone(self.port.get(TRANSACTIONS_KEY))

    def test_invalid_records_are_dropped_siblings_kept(self):
        data = [
            raw('good-1'),
            {k: v for k, v in raw('x').items() if k != 'id'},
            raw('', description='empty id'),
            raw('bad-amount', amount='12'),
            raw('bad-date', date='not a date'),
            raw('no-date', date=None),
            raw('savings', kind='savings'),
            'not an object',
            raw('good-2', kind='income', necessity=None),
        ]
        self.port.set(TRANSACTIONS_KEY, json.dumps(data))

        records = self.restart().load()
        self.assertEqual([r.id for r in records], ['good-1', 'good-2'])

    def test_legacy_record_without_kind_is_expense(self):
        data = raw('legacy')
        del data['kind']
        del data['necessity']
        self.port.set(TRANSACTIONS_KEY, json.dumps([data]))

        record = self.restart().load()[0]
        self.assertEqual(record.kind, Kind.Expense)
        self.assertIsNone(record.necessity)

    def test_storage_full_on_add(self):
        port = MemoryStore(capacity=600)
        store = RecordStore(port)
        before = store.add(entry(description='fits'))

        with self.assertRaises(status.StorageFullException):
            store.add(entry(description='x' * 1000))

        self.assertEqual(store.records, before)
        self.assertEqual(store.load(), before)
        self.assertNotIn('x' * 1000, [r.description for r in RecordStore(port).load()])

    def test_storage_full_does_not_emit(self):
        store = RecordStore(MemoryStore(capacity=10))
        recorder = SignalRecorder(store.transactionsChanged)
        with self.assertRaises(status.StorageFullException):
            store.add(entry())
        self.assertEqual(recorder.emissions, [])

    def test_storage_full_on_update_and_remove(self):
        port = MemoryStore(capacity=2000)
        store = RecordStore(port)
        store.add(entry(description='first'))
        before = store.add(entry(description='second'))
        recorder = SignalRecorder(store.transactionsChanged)
        self.addCleanup(recorder.disconnect)
        port.capacity = 10

        with self.assertRaises(status.StorageFullException):
            store.update(before[0].id, {'description': 'edited'})
        with self.assertRaises(status.StorageFullException):
            store.remove(before[1].id)

        self.assertEqual(store.records, before)
        self.assertEqual(store.load(), before)
        self.assertEqual(RecordStore(port).load(), before)
        self.assertEqual(recorder.emissions, [])

    def test_undecodable_file_slot_is_reset(self):
        port = FileStore(self.config_paths.slots_dir)
        port.path(TRANSACTIONS_KEY).write_bytes(b'[\xff\xfe{"id": 1}]')

        store = RecordStore(port)

        self.assertEqual(store.records, [])
        self.assertEqual(store.load(), [])
        self.assertFalse(port.path(TRANSACTIONS_KEY).exists())
        self.assertEqual(len(store.add(entry())), 1)


class RecordHelpersTests(BaseTestCase):
    def test_record_from_dict(self):
        record = record_from_dict(raw('r1'))
        self.assertIsInstance(record, TransactionRecord)
        self.assertEqual(record.necessity, Necessity.Want)
        self.assertEqual(record.to_dict(), raw('r1'))

    def test_record_from_dict_rejects_non_mapping(self):
        with self.assertRaises(ValueError):
            record_from_dict(['r1'])

    def test_records_to_frame(self):
        records = [record_from_dict(raw('a')), record_from_dict(raw('b', amount=10))]
        df = records_to_frame(records)

        self.assertIsInstance(df, pd.DataFrame)
        self.assertEqual(list(df.columns), RECORD_COLUMNS)
        self.assertEqual(list(df['id']), ['a', 'b'])
        self.assertEqual(df['amount'].sum(), 14.5)

    def test_records_to_frame_empty(self):
        df = records_to_frame([])
        self.assertTrue(df.empty)
        self.assertEqual(list(df.columns), RECORD_COLUMNS)
