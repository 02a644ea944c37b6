import unittest
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from nudgebox.credentials import CredentialStore
from nudgebox.db import InMemoryDbClient, PostgresDbClient
from nudgebox.errors import AlreadyExists, NudgeboxError, StoreUnavailable


class CredentialStoreTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.credentials = CredentialStore(self.db, rounds=4)

    def test_register_and_verify(self):
        self.credentials.register("alice", "pw1")
        self.assertTrue(self.credentials.exists("alice"))
        self.assertTrue(self.credentials.verify("alice", "pw1"))
        self.assertFalse(self.credentials.verify("alice", "pw2"))

    def test_password_is_not_stored_in_clear(self):
        self.credentials.register("alice", "pw1")
        stored = self.db.users["alice"]
        self.assertNotIn(b"pw1", stored)
        self.assertTrue(stored.startswith(b"$2"))

    def test_same_password_gets_distinct_salts(self):
        self.credentials.register("alice", "same")
        self.credentials.register("bob", "same")
        self.assertNotEqual(self.db.users["alice"], self.db.users["bob"])

    def test_registration_is_exclusive(self):
        self.credentials.register("alice", "pw1")
        original = self.db.users["alice"]
        for _ in range(2):
            with self.assertRaises(AlreadyExists):
                self.credentials.register("alice", "pw2")
        self.assertEqual(self.db.users["alice"], original)
        self.assertTrue(self.credentials.verify("alice", "pw1"))

    def test_exists_unchanged_by_failed_insert(self):
        self.assertFalse(self.credentials.exists("alice"))
        self.credentials.register("alice", "pw1")
        before = self.credentials.exists("alice")
        with self.assertRaises(AlreadyExists):
            self.credentials.register("alice", "pw1")
        self.assertEqual(self.credentials.exists("alice"), before)

    def test_unknown_identifier_does_not_verify(self):
        self.assertFalse(self.credentials.verify("nobody", "pw"))

    def test_overlong_password(self):
        with self.assertRaises(NudgeboxError):
            self.credentials.register("alice", "p" * 73)
        self.assertFalse(self.credentials.exists("alice"))
        self.credentials.register("bob", "p" * 72)
        self.assertFalse(self.credentials.verify("bob", "p" * 73))

    def test_sql_backend(self):
        credentials = CredentialStore(
            PostgresDbClient("sqlite+pysqlite:///:memory:"), rounds=4
        )
        credentials.register("alice", "pw1")
        self.assertTrue(credentials.verify("alice", "pw1"))
        with self.assertRaises(AlreadyExists):
            credentials.register("alice", "pw1")

    def test_database_outage_is_store_unavailable(self):
        db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        session = MagicMock()
        session.__enter__.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        db.Session = MagicMock(return_value=session)
        credentials = CredentialStore(db, rounds=4)
        with self.assertRaises(StoreUnavailable) as ctx:
            credentials.verify("alice", "pw1")
        self.assertNotIn("down", ctx.exception.reason)


if __name__ == "__main__":
    unittest.main()
