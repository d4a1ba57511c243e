import unittest
from relaytools.sql.sql_manager import SQLManager
from relaytools.utilities.exceptions import PersistenceError
from relaytools.utilities.key_value_store import PostgresKeyValueStore, MemoryKeyValueStore
from fakes import FlakyDBManager

class TestPostgresKeyValueStore(unittest.IsolatedAsyncioTestCase):
    async def test_unreachable_database_raises_persistence_error(self):
        store = PostgresKeyValueStore(FlakyDBManager())
        with self.assertRaises(PersistenceError):
            await store.initialize()
        with self.assertRaises(PersistenceError):
            await store.get('/basodino/score')
        with self.assertRaises(PersistenceError):
            await store.set('/basodino/score', {})
        self.assertFalse(store.initialized)

    async def test_tables_are_created_once_on_first_access(self):
        db_manager = FlakyDBManager()
        db_manager.available = True
        store = PostgresKeyValueStore(db_manager)

        self.assertIsNone(await store.get('/basodino/score'))
        await store.set('/basodino/score', {'a': 1})

        self.assertTrue(store.initialized)
        creates = [statement for statement in db_manager.pool.executed if 'CREATE TABLE' in statement]
        self.assertEqual(len(creates), 1)

class TestMemoryKeyValueStore(unittest.IsolatedAsyncioTestCase):
    async def test_values_are_copied(self):
        store = MemoryKeyValueStore()
        value = {'a': 1}
        await store.set('/x', value)
        value['a'] = 2
        stored = await store.get('/x')
        stored['a'] = 3
        self.assertEqual(await store.get('/x'), {'a': 1})
        self.assertTrue(await store.exists('/x'))
        self.assertFalse(await store.exists('/y'))

class TestSQLManager(unittest.TestCase):
    def test_create_tables_statements(self):
        statements = SQLManager().load_statements('init', 'create_tables')
        self.assertEqual(len(statements), 2)
        self.assertIn('CREATE TABLE IF NOT EXISTS ledger_documents', statements[0])
        self.assertIn('CREATE INDEX', statements[1])

    def test_missing_script(self):
        with self.assertRaises(FileNotFoundError):
            SQLManager().load_script('init', 'no_such_script')

if __name__ == '__main__':
    unittest.main()
