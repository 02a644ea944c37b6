import unittest

from nudgebox.db import InMemoryDbClient, PostgresDbClient, WellbeingRecord
from nudgebox.errors import AlreadyExists
from nudgebox.mailbox import SqlMailboxStore, advisory_lock_id


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    @classmethod
    def setUpClass(cls):
        cls.db = PostgresDbClient("sqlite+pysqlite:///:memory:")

    def test_insert_and_lookup_user(self):
        self.assertFalse(self.db.user_exists("alice"))
        self.db.insert_user("alice", b"hash-1")
        self.assertTrue(self.db.user_exists("alice"))
        self.assertEqual(self.db.get_password_hash("alice"), b"hash-1")
        self.assertIsNone(self.db.get_password_hash("nobody"))

    def test_duplicate_user_keeps_original_hash(self):
        self.db.insert_user("bob", b"hash-1")
        with self.assertRaises(AlreadyExists):
            self.db.insert_user("bob", b"hash-2")
        self.assertTrue(self.db.user_exists("bob"))
        self.assertEqual(self.db.get_password_hash("bob"), b"hash-1")

    def test_wellbeing_summaries_match_in_memory(self):
        db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        memory = InMemoryDbClient()
        records = [
            WellbeingRecord(post_code="N1", support_code="GP", wellbeing_score=4.0),
            WellbeingRecord(post_code="N1", support_code="GP", wellbeing_score=2.0),
            WellbeingRecord(post_code="N1", support_code="NHS", wellbeing_score=5.0),
            WellbeingRecord(post_code="E2", support_code="GP", wellbeing_score=None),
        ]
        for record in records:
            db.insert_wellbeing_record(record)
            memory.insert_wellbeing_record(record)

        self.assertEqual(db.postcode_summary(), memory.postcode_summary())
        self.assertEqual(db.support_code_summary(), memory.support_code_summary())
        self.assertEqual(
            db.postcode_summary(),
            [
                {"name": "E2", "avgscore": 0.0, "quantity": 1},
                {"name": "N1", "avgscore": 11.0 / 3, "quantity": 3},
            ],
        )


class SqlMailboxStoreTests(unittest.TestCase):
    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.store = SqlMailboxStore(self.db.engine, timeout=1.0)

    def test_overwrite_replaces_pending_pair(self):
        with self.store.pair_scope("messages", "alice", "bob") as box:
            self.assertFalse(box.is_pending("alice", "bob"))
            box.insert("alice", "bob", '"one"', overwrite=False)
        with self.store.pair_scope("messages", "alice", "bob") as box:
            self.assertTrue(box.is_pending("alice", "bob"))
            box.insert("alice", "bob", '"two"', overwrite=True)

        with self.store.inbox_scope("messages", "bob") as box:
            pending = box.fetch_all("bob")
        self.assertEqual([m.payload for m in pending], ['"two"'])

    def test_append_keeps_arrival_order(self):
        for sender, payload in (("alice", "1"), ("carol", "2"), ("alice", "3")):
            with self.store.pair_scope("nudges", sender, "bob") as box:
                box.insert(sender, "bob", payload, overwrite=False)

        with self.store.inbox_scope("nudges", "bob") as box:
            pending = box.fetch_all("bob")
            box.delete_all("bob", pending)

        self.assertEqual([m.payload for m in pending], ["1", "2", "3"])
        self.assertEqual([m.sender_id for m in pending], ["alice", "carol", "alice"])
        with self.store.inbox_scope("nudges", "bob") as box:
            self.assertEqual(box.fetch_all("bob"), [])

    def test_delete_only_removes_fetched_messages(self):
        with self.store.pair_scope("nudges", "alice", "bob") as box:
            box.insert("alice", "bob", "1", overwrite=False)
        with self.store.inbox_scope("nudges", "bob") as box:
            fetched = box.fetch_all("bob")
        with self.store.pair_scope("nudges", "alice", "bob") as box:
            box.insert("alice", "bob", "2", overwrite=False)
        with self.store.inbox_scope("nudges", "bob") as box:
            box.delete_all("bob", fetched)
            remaining = box.fetch_all("bob")
        self.assertEqual([m.payload for m in remaining], ["2"])

    def test_channels_are_isolated(self):
        with self.store.pair_scope("messages", "alice", "bob") as box:
            box.insert("alice", "bob", "m", overwrite=False)
        with self.store.inbox_scope("nudges", "bob") as box:
            self.assertEqual(box.fetch_all("bob"), [])

    def test_failed_scope_rolls_back(self):
        with self.assertRaises(RuntimeError):
            with self.store.pair_scope("messages", "alice", "bob") as box:
                box.insert("alice", "bob", "m", overwrite=False)
                raise RuntimeError("boom")
        with self.store.pair_scope("messages", "alice", "bob") as box:
            self.assertFalse(box.is_pending("alice", "bob"))

    def test_advisory_lock_id_is_stable_and_signed_64_bit(self):
        first = advisory_lock_id("pair", "messages", "alice", "bob")
        self.assertEqual(first, advisory_lock_id("pair", "messages", "alice", "bob"))
        self.assertNotEqual(first, advisory_lock_id("pair", "messages", "bob", "alice"))
        self.assertGreaterEqual(first, -(2**63))
        self.assertLess(first, 2**63)


if __name__ == "__main__":
    unittest.main()
