import unittest
from unittest.mock import MagicMock

from nudgebox.credentials import CredentialStore
from nudgebox.db import InMemoryDbClient
from nudgebox.errors import InvalidCredentials
from nudgebox.exchange import MESSAGES, NUDGES, Channel, Delivery, ExchangeService
from nudgebox.mailbox import InMemoryMailboxStore


class ExchangeServiceTests(unittest.TestCase):
    def setUp(self):
        self.credentials = CredentialStore(InMemoryDbClient(), rounds=4)
        for identifier, password in (
            ("alice", "pw1"),
            ("bob", "pw2"),
            ("carol", "pw3"),
            ("dave", "pw4"),
        ):
            self.credentials.register(identifier, password)
        self.mailbox = InMemoryMailboxStore()
        self.exchange = ExchangeService(self.credentials, self.mailbox)

    def test_scenario(self):
        self.exchange.send(MESSAGES, "alice", "pw1", "bob", {"x": 1})
        self.assertEqual(
            self.exchange.receive(MESSAGES, "bob", "pw2"),
            [Delivery(sender_id="alice", payload={"x": 1})],
        )
        self.assertEqual(self.exchange.receive(MESSAGES, "bob", "pw2"), [])

    def test_message_channel_keeps_latest_pending(self):
        self.exchange.send(MESSAGES, "alice", "pw1", "bob", "payload1")
        self.exchange.send(MESSAGES, "alice", "pw1", "bob", "payload2")
        pending = self.mailbox.boxes[(MESSAGES.name, "bob")]
        self.assertEqual([m.payload for m in pending], ['"payload2"'])

    def test_nudge_channel_keeps_every_send(self):
        self.exchange.send(NUDGES, "alice", "pw1", "bob", "payload1")
        self.exchange.send(NUDGES, "alice", "pw1", "bob", "payload2")
        received = self.exchange.receive(NUDGES, "bob", "pw2")
        self.assertEqual([d.payload for d in received], ["payload1", "payload2"])

    def test_overwrite_flag_follows_policy_and_pending_state(self):
        cases = [
            (True, True, True),
            (True, False, False),
            (False, True, False),
            (False, False, False),
        ]
        for policy, pending, expected in cases:
            with self.subTest(policy=policy, pending=pending):
                mailbox = MagicMock()
                box = mailbox.pair_scope.return_value.__enter__.return_value
                box.is_pending.return_value = pending
                exchange = ExchangeService(self.credentials, mailbox)
                exchange.send(Channel("custom", policy), "alice", "pw1", "bob", 1)
                mailbox.pair_scope.assert_called_once_with("custom", "alice", "bob")
                box.insert.assert_called_once_with("alice", "bob", "1", overwrite=expected)

    def test_cross_pair_isolation(self):
        self.exchange.send(MESSAGES, "alice", "pw1", "carol", "for carol")
        self.exchange.send(MESSAGES, "dave", "pw4", "bob", "from dave")
        self.exchange.send(MESSAGES, "alice", "pw1", "bob", "x")

        self.assertEqual(
            self.exchange.receive(MESSAGES, "carol", "pw3"),
            [Delivery("alice", "for carol")],
        )
        self.assertEqual(
            self.exchange.receive(MESSAGES, "bob", "pw2"),
            [Delivery("dave", "from dave"), Delivery("alice", "x")],
        )

    def test_channels_do_not_share_pending_messages(self):
        self.exchange.send(MESSAGES, "alice", "pw1", "bob", "m")
        self.assertEqual(self.exchange.receive(NUDGES, "bob", "pw2"), [])
        self.assertEqual(len(self.exchange.receive(MESSAGES, "bob", "pw2")), 1)

    def test_payload_shapes_round_trip(self):
        payloads = [None, 3, 2.5, "text", [1, "two"], {"nested": {"k": [True]}}]
        for payload in payloads:
            self.exchange.send(NUDGES, "alice", "pw1", "bob", payload)
        received = self.exchange.receive(NUDGES, "bob", "pw2")
        self.assertEqual([d.payload for d in received], payloads)

    def test_bad_sender_password_has_no_effect(self):
        with self.assertRaises(InvalidCredentials):
            self.exchange.send(MESSAGES, "alice", "wrong", "bob", "x")
        self.assertEqual(self.mailbox.boxes, {})

    def test_receive_requires_recipient_password(self):
        self.exchange.send(MESSAGES, "alice", "pw1", "bob", "x")
        with self.assertRaises(InvalidCredentials):
            self.exchange.receive(MESSAGES, "bob", "pw1")
        self.assertEqual(len(self.exchange.receive(MESSAGES, "bob", "pw2")), 1)

    def test_unknown_identifier_looks_like_wrong_password(self):
        with self.assertRaises(InvalidCredentials) as unknown:
            self.exchange.receive(MESSAGES, "mallory", "pw2")
        with self.assertRaises(InvalidCredentials) as wrong:
            self.exchange.receive(MESSAGES, "bob", "pw1")
        self.assertEqual(unknown.exception.reason, wrong.exception.reason)


if __name__ == "__main__":
    unittest.main()
