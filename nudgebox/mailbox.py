"""
Mailbox storage for pending messages.

Supports an in-memory store for tests/local runs, a SQLAlchemy store sharing
the credential database, and a Redis-backed store using one list per inbox.

Callers work inside a scope that serialises access to one key:

* ``pair_scope(channel, sender_id, recipient_id)`` for the pending-check and
  insert of a send,
* ``inbox_scope(channel, recipient_id)`` for the fetch and delete of a receive.

Scopes on unrelated keys never block each other. ``delete_all`` removes only the
messages handed back by ``fetch_all``, so a message that arrives between the two
calls stays pending for the next receive.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import ContextManager, Dict, Iterator, Protocol, Sequence

import redis
from redis import exceptions as redis_exceptions
from sqlalchemy import Column, Float, Index, Integer, String, Text, delete, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from nudgebox.db import Base
from nudgebox.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingMessage:
    message_id: str
    channel: str
    sender_id: str
    recipient_id: str
    payload: str
    created_at: float = field(default_factory=lambda: time.time())


class MailboxScope(Protocol):
    """Operations available while a mailbox key is held."""

    def is_pending(self, sender_id: str, recipient_id: str) -> bool:
        ...

    def insert(
        self, sender_id: str, recipient_id: str, payload: str, overwrite: bool
    ) -> None:
        ...

    def fetch_all(self, recipient_id: str) -> list[PendingMessage]:
        ...

    def delete_all(
        self, recipient_id: str, messages: Sequence[PendingMessage]
    ) -> None:
        ...


class MailboxStore(Protocol):
    """Per-channel pending message storage."""

    def pair_scope(
        self, channel: str, sender_id: str, recipient_id: str
    ) -> ContextManager[MailboxScope]:
        ...

    def inbox_scope(
        self, channel: str, recipient_id: str
    ) -> ContextManager[MailboxScope]:
        ...


class KeyedLock:
    """
    Striped mutexes keyed by arbitrary tuples.

    Distinct keys usually land on distinct stripes; a collision only costs a
    short wait, never a deadlock, because a scope holds a single stripe.
    """

    def __init__(self, timeout: float = 5.0, stripes: int = 256):
        self.timeout = timeout
        self._locks = [threading.Lock() for _ in range(stripes)]

    @contextmanager
    def hold(self, key: tuple) -> Iterator[None]:
        lock = self._locks[hash(key) % len(self._locks)]
        if not lock.acquire(timeout=self.timeout):
            logger.warning("Timed out waiting for mailbox key %s", key[0])
            raise StoreUnavailable()
        try:
            yield
        finally:
            lock.release()


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class _InMemoryScope:
    def __init__(self, store: "InMemoryMailboxStore", channel: str):
        self.store = store
        self.channel = channel

    def is_pending(self, sender_id: str, recipient_id: str) -> bool:
        with self.store._mutex:
            box = self.store.boxes.get((self.channel, recipient_id), [])
            return any(m.sender_id == sender_id for m in box)

    def insert(
        self, sender_id: str, recipient_id: str, payload: str, overwrite: bool
    ) -> None:
        message = PendingMessage(
            message_id=uuid.uuid4().hex,
            channel=self.channel,
            sender_id=sender_id,
            recipient_id=recipient_id,
            payload=payload,
        )
        with self.store._mutex:
            box = self.store.boxes.setdefault((self.channel, recipient_id), [])
            if overwrite:
                box[:] = [m for m in box if m.sender_id != sender_id]
            box.append(message)

    def fetch_all(self, recipient_id: str) -> list[PendingMessage]:
        with self.store._mutex:
            return list(self.store.boxes.get((self.channel, recipient_id), []))

    def delete_all(
        self, recipient_id: str, messages: Sequence[PendingMessage]
    ) -> None:
        fetched = {m.message_id for m in messages}
        with self.store._mutex:
            box = self.store.boxes.get((self.channel, recipient_id))
            if box is None:
                return
            box[:] = [m for m in box if m.message_id not in fetched]
            if not box:
                del self.store.boxes[(self.channel, recipient_id)]


class InMemoryMailboxStore:
    """Simple in-memory mailbox for development and tests."""

    def __init__(self, timeout: float = 5.0):
        self.boxes: Dict[tuple[str, str], list[PendingMessage]] = {}
        self._mutex = threading.Lock()
        self._keys = KeyedLock(timeout=timeout)

    @contextmanager
    def pair_scope(
        self, channel: str, sender_id: str, recipient_id: str
    ) -> Iterator[_InMemoryScope]:
        with self._keys.hold(("pair", channel, sender_id, recipient_id)):
            yield _InMemoryScope(self, channel)

    @contextmanager
    def inbox_scope(self, channel: str, recipient_id: str) -> Iterator[_InMemoryScope]:
        with self._keys.hold(("inbox", channel, recipient_id)):
            yield _InMemoryScope(self, channel)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._mutex:
            self.boxes.clear()


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


def advisory_lock_id(*parts: str) -> int:
    """Stable signed 64-bit id for pg_advisory_xact_lock."""
    digest = hashlib.blake2b("\x1f".join(parts).encode("utf-8"), digest_size=8)
    return int.from_bytes(digest.digest(), "big", signed=True)


class _SqlScope:
    def __init__(self, session: Session, channel: str):
        self.session = session
        self.channel = channel

    def is_pending(self, sender_id: str, recipient_id: str) -> bool:
        stmt = (
            select(MessageRow.id)
            .where(
                MessageRow.channel == self.channel,
                MessageRow.sender_id == sender_id,
                MessageRow.recipient_id == recipient_id,
            )
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def insert(
        self, sender_id: str, recipient_id: str, payload: str, overwrite: bool
    ) -> None:
        if overwrite:
            self.session.execute(
                delete(MessageRow).where(
                    MessageRow.channel == self.channel,
                    MessageRow.sender_id == sender_id,
                    MessageRow.recipient_id == recipient_id,
                )
            )
        self.session.add(
            MessageRow(
                channel=self.channel,
                sender_id=sender_id,
                recipient_id=recipient_id,
                payload=payload,
                created_at=time.time(),
            )
        )
        self.session.flush()

    def fetch_all(self, recipient_id: str) -> list[PendingMessage]:
        stmt = (
            select(MessageRow)
            .where(
                MessageRow.channel == self.channel,
                MessageRow.recipient_id == recipient_id,
            )
            .order_by(MessageRow.id.asc())
        )
        return [
            PendingMessage(
                message_id=str(row.id),
                channel=row.channel,
                sender_id=row.sender_id,
                recipient_id=row.recipient_id,
                payload=row.payload,
                created_at=row.created_at,
            )
            for row in self.session.execute(stmt).scalars()
        ]

    def delete_all(
        self, recipient_id: str, messages: Sequence[PendingMessage]
    ) -> None:
        ids = [int(m.message_id) for m in messages]
        if not ids:
            return
        self.session.execute(
            delete(MessageRow).where(
                MessageRow.channel == self.channel,
                MessageRow.recipient_id == recipient_id,
                MessageRow.id.in_(ids),
            )
        )


class SqlMailboxStore:
    """
    Pending messages in a SQL table, one transaction per scope.

    On PostgreSQL the key is held with a transaction-scoped advisory lock, so
    several service processes can share the database. Other dialects fall back
    to an in-process key lock.
    """

    def __init__(self, engine, timeout: float = 5.0):
        self.engine = engine
        self.timeout = timeout
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._advisory = engine.dialect.name == "postgresql"
        self._keys = KeyedLock(timeout=timeout)
        Base.metadata.create_all(self.engine, tables=[MessageRow.__table__])

    @contextmanager
    def _scope(self, channel: str, key: tuple[str, ...]) -> Iterator[_SqlScope]:
        try:
            with ExitStack() as stack:
                if not self._advisory:
                    stack.enter_context(self._keys.hold(key))
                session = stack.enter_context(self.Session())
                stack.enter_context(session.begin())
                if self._advisory:
                    timeout_ms = int(self.timeout * 1000)
                    session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
                    session.execute(
                        text("SELECT pg_advisory_xact_lock(:lock_id)"),
                        {"lock_id": advisory_lock_id(*key)},
                    )
                yield _SqlScope(session, channel)
        except OperationalError as exc:
            logger.exception("Mailbox database unavailable")
            raise StoreUnavailable() from exc

    def pair_scope(
        self, channel: str, sender_id: str, recipient_id: str
    ) -> ContextManager[_SqlScope]:
        return self._scope(channel, ("pair", channel, sender_id, recipient_id))

    def inbox_scope(self, channel: str, recipient_id: str) -> ContextManager[_SqlScope]:
        return self._scope(channel, ("inbox", channel, recipient_id))


class MessageRow(Base):
    __tablename__ = "pending_messages"
    __table_args__ = (
        Index("ix_pending_messages_inbox", "channel", "recipient_id"),
        Index("ix_pending_messages_pair", "channel", "sender_id", "recipient_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel = Column(String, nullable=False)
    sender_id = Column(String, nullable=False)
    recipient_id = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class _RedisScope:
    def __init__(self, store: "RedisMailboxStore", channel: str):
        self.store = store
        self.channel = channel
        self._raw: Dict[str, bytes] = {}

    def _entries(self, recipient_id: str) -> list[tuple[bytes, dict]]:
        raw_items = self.store.client.lrange(
            self.store.inbox_key(self.channel, recipient_id), 0, -1
        )
        return [(raw, json.loads(raw)) for raw in raw_items]

    def is_pending(self, sender_id: str, recipient_id: str) -> bool:
        return any(
            entry["sender_id"] == sender_id
            for _, entry in self._entries(recipient_id)
        )

    def insert(
        self, sender_id: str, recipient_id: str, payload: str, overwrite: bool
    ) -> None:
        key = self.store.inbox_key(self.channel, recipient_id)
        entry = json.dumps(
            {
                "id": uuid.uuid4().hex,
                "sender_id": sender_id,
                "payload": payload,
                "created_at": time.time(),
            }
        )
        pipe = self.store.client.pipeline(transaction=True)
        if overwrite:
            for raw, existing in self._entries(recipient_id):
                if existing["sender_id"] == sender_id:
                    pipe.lrem(key, 0, raw)
        pipe.rpush(key, entry)
        pipe.execute()

    def fetch_all(self, recipient_id: str) -> list[PendingMessage]:
        messages = []
        for raw, entry in self._entries(recipient_id):
            self._raw[entry["id"]] = raw
            messages.append(
                PendingMessage(
                    message_id=entry["id"],
                    channel=self.channel,
                    sender_id=entry["sender_id"],
                    recipient_id=recipient_id,
                    payload=entry["payload"],
                    created_at=entry["created_at"],
                )
            )
        return messages

    def delete_all(
        self, recipient_id: str, messages: Sequence[PendingMessage]
    ) -> None:
        if not messages:
            return
        key = self.store.inbox_key(self.channel, recipient_id)
        pipe = self.store.client.pipeline(transaction=True)
        for message in messages:
            raw = self._raw.get(message.message_id)
            if raw is not None:
                pipe.lrem(key, 1, raw)
        pipe.execute()


@dataclass
class RedisMailboxStore:
    """Redis-backed mailbox using one list per (channel, recipient) inbox."""

    url: str
    key_prefix: str = "nudgebox"
    timeout: float = 5.0
    lock_lease_seconds: float = 30.0

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def inbox_key(self, channel: str, recipient_id: str) -> str:
        return f"{self.key_prefix}:{channel}:inbox:{recipient_id}"

    @contextmanager
    def _scope(self, channel: str, lock_name: str) -> Iterator[_RedisScope]:
        lock = self.client.lock(
            f"{self.key_prefix}:lock:{lock_name}",
            timeout=self.lock_lease_seconds,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = lock.acquire()
        except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
            # Connection resets can happen on managed Redis; reconnect for the next call.
            self.client = redis.Redis.from_url(self.url)
            raise StoreUnavailable() from exc
        if not acquired:
            logger.warning("Timed out waiting for mailbox lock %s", lock_name)
            raise StoreUnavailable()
        try:
            yield _RedisScope(self, channel)
        except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
            logger.exception("Redis unavailable during mailbox operation")
            raise StoreUnavailable() from exc
        finally:
            try:
                lock.release()
            except redis_exceptions.LockError:
                logger.warning("Mailbox lock %s expired before release", lock_name)
            except redis_exceptions.ConnectionError:
                logger.warning("Could not release mailbox lock %s", lock_name)

    def pair_scope(
        self, channel: str, sender_id: str, recipient_id: str
    ) -> ContextManager[_RedisScope]:
        return self._scope(channel, f"{channel}:pair:{sender_id}:{recipient_id}")

    def inbox_scope(self, channel: str, recipient_id: str) -> ContextManager[_RedisScope]:
        return self._scope(channel, f"{channel}:inbox:{recipient_id}")
