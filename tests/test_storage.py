"""Tests for Budgly.core.storage."""
import errno
import os
from unittest.mock import patch

from Budgly.core.storage import FileStore, MemoryStore, verify_key
from Budgly.status import status
from tests.base import BaseTestCase


class FileStoreTests(BaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = FileStore(self.config_paths.slots_dir)

    def test_missing_slot_reads_none(self):
        self.assertIsNone(self.store.get('transactions'))

    def test_set_then_get(self):
        self.store.set('transactions', '[{"id": "a"}]')
        self.assertEqual(self.store.get('transactions'), '[{"id": "a"}]')
        self.assertTrue((self.config_paths.slots_dir / 'transactions.json').exists())

    def test_set_replaces_whole_slot(self):
        self.store.set('theme', '"light"')
        self.store.set('theme', '"dark"')
        self.assertEqual(self.store.get('theme'), '"dark"')

    def test_survives_new_instance(self):
        self.store.set('settings', '{"currency": "EUR"}')
        reopened = FileStore(self.config_paths.slots_dir)
        self.assertEqual(reopened.get('settings'), '{"currency": "EUR"}')

    def test_remove_missing_is_not_an_error(self):
        self.store.remove('google_sheets')
        self.store.set('google_sheets', '{}')
        self.store.remove('google_sheets')
        self.assertIsNone(self.store.get('google_sheets'))

    def test_unicode_round_trip(self):
        self.store.set('transactions', '["Café ☕ – ₨"]')
        self.assertEqual(self.store.get('transactions'), '["Café ☕ – ₨"]')

    def test_disk_full_raises_storage_full_and_keeps_old_value(self):
        self.store.set('transactions', '[]')
        with patch('Budgly.core.storage.os.replace', side_effect=OSError(errno.ENOSPC, 'No space left on device')):
            with self.assertRaises(status.StorageFullException):
                self.store.set('transactions', '[1, 2, 3]')

        self.assertEqual(self.store.get('transactions'), '[]')
        leftovers = [p for p in os.listdir(self.config_paths.slots_dir) if p.endswith('.tmp')]
        self.assertEqual(leftovers, [])

    def test_other_os_errors_propagate(self):
        with patch('Budgly.core.storage.os.replace', side_effect=OSError(errno.EACCES, 'Permission denied')):
            with self.assertRaises(OSError) as ctx:
                self.store.set('transactions', '[]')
        self.assertNotIsInstance(ctx.exception, status.StorageFullException)

    def test_invalid_keys(self):
        for key in ('', '../escape', 'a/b', 'with space'):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    self.store.get(key)


class MemoryStoreTests(BaseTestCase):
    def test_capacity_is_enforced(self):
        store = MemoryStore(capacity=10)
        store.set('a', '12345')
        with self.assertRaises(status.StorageFullException):
            store.set('b', '123456')
        self.assertIsNone(store.get('b'))

    def test_replacing_a_slot_frees_its_old_size(self):
        store = MemoryStore(capacity=10)
        store.set('a', '1234567890')
        store.set('a', '0987654321')
        self.assertEqual(store.get('a'), '0987654321')

    def test_keys(self):
        store = MemoryStore()
        store.set('theme', '"dark"')
        store.set('settings', '{}')
        store.remove('theme')
        self.assertEqual(store.keys(), ['settings'])

    def test_verify_key(self):
        self.assertEqual(verify_key('dashboard_layout'), 'dashboard_layout')
        with self.assertRaises(ValueError):
            verify_key(None)
