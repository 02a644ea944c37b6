"""
Password-gated message exchange between two identifiers.

Messages and nudges run through the same protocol. The only difference is the
channel's overwrite policy: a repeated message to the same recipient replaces
the undelivered one, a repeated nudge is queued next to it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from nudgebox.credentials import CredentialStore
from nudgebox.errors import InvalidCredentials
from nudgebox.mailbox import MailboxStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Channel:
    name: str
    overwrite: bool


MESSAGES = Channel(name="unread_messages", overwrite=True)
NUDGES = Channel(name="user_nudge", overwrite=False)


@dataclass(frozen=True)
class Delivery:
    sender_id: str
    payload: Any

    def as_dict(self) -> dict:
        return {"sender_id": self.sender_id, "payload": self.payload}


class ExchangeService:
    def __init__(self, credentials: CredentialStore, mailbox: MailboxStore):
        self.credentials = credentials
        self.mailbox = mailbox

    def _authenticate(self, identifier: str, password: str) -> None:
        if not self.credentials.verify(identifier, password):
            logger.info("Rejected credentials for %s", identifier)
            raise InvalidCredentials()

    def send(
        self,
        channel: Channel,
        sender_id: str,
        sender_password: str,
        recipient_id: str,
        payload: Any,
    ) -> None:
        """
        Queue ``payload`` for ``recipient_id``.

        Overwrites only when the channel allows it and an earlier send from the
        same sender is still undelivered.
        """
        self._authenticate(sender_id, sender_password)
        serialized = json.dumps(payload)
        with self.mailbox.pair_scope(channel.name, sender_id, recipient_id) as box:
            pending = box.is_pending(sender_id, recipient_id)
            box.insert(
                sender_id,
                recipient_id,
                serialized,
                overwrite=channel.overwrite and pending,
            )
        logger.debug(
            "Queued %s from %s to %s (replaced=%s)",
            channel.name,
            sender_id,
            recipient_id,
            channel.overwrite and pending,
        )

    def receive(
        self, channel: Channel, recipient_id: str, recipient_password: str
    ) -> list[Delivery]:
        """Return every pending message for the recipient and remove them."""
        self._authenticate(recipient_id, recipient_password)
        with self.mailbox.inbox_scope(channel.name, recipient_id) as box:
            messages = box.fetch_all(recipient_id)
            box.delete_all(recipient_id, messages)
        return [
            Delivery(sender_id=m.sender_id, payload=json.loads(m.payload))
            for m in messages
        ]
