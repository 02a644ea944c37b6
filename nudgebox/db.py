"""
Database abstraction for Postgres and an in-memory test implementation.

Holds the credential table and the wellbeing records. Pending messages live in
``nudgebox.mailbox``, which shares the declarative ``Base`` defined here.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    Integer,
    LargeBinary,
    String,
    create_engine,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from nudgebox.errors import AlreadyExists, StoreUnavailable

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface for database access."""

    def user_exists(self, identifier: str) -> bool:
        ...

    def get_password_hash(self, identifier: str) -> Optional[bytes]:
        ...

    def insert_user(self, identifier: str, password_hash: bytes) -> None:
        ...

    def insert_wellbeing_record(self, record: "WellbeingRecord") -> None:
        ...

    def postcode_summary(self) -> list[dict]:
        ...

    def support_code_summary(self) -> list[dict]:
        ...


@dataclass
class WellbeingRecord:
    post_code: str
    support_code: str
    audio_url: str = ""
    weekly_steps: Optional[int] = None
    wellbeing_score: Optional[float] = None
    sputum_colour: Optional[float] = None
    mrc_dyspnoea_scale: Optional[float] = None
    speech_rate_test: Optional[float] = None
    test_duration: Optional[float] = None
    date_sent: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())


def _summarize_postcodes(rows: list[tuple[str, Optional[float]]]) -> list[dict]:
    grouped: Dict[str, list[float]] = defaultdict(list)
    counts: Dict[str, int] = defaultdict(int)
    for post_code, score in rows:
        counts[post_code] += 1
        if score is not None:
            grouped[post_code].append(score)
    return [
        {
            "name": post_code,
            "avgscore": _mean(grouped[post_code]),
            "quantity": counts[post_code],
        }
        for post_code in sorted(counts)
    ]


def _summarize_support_codes(
    rows: list[tuple[str, str, Optional[float]]]
) -> list[dict]:
    grouped: Dict[tuple[str, str], list[float]] = defaultdict(list)
    counts: Dict[tuple[str, str], int] = defaultdict(int)
    for post_code, support_code, score in rows:
        key = (support_code, post_code)
        counts[key] += 1
        if score is not None:
            grouped[key].append(score)
    return [
        {
            "name": post_code,
            "supportcode": support_code,
            "score": _mean(grouped[(support_code, post_code)]),
            "entries": counts[(support_code, post_code)],
        }
        for support_code, post_code in sorted(counts)
    ]


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, bytes] = {}
        self.records: list[WellbeingRecord] = []
        self._lock = threading.Lock()

    def user_exists(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self.users

    def get_password_hash(self, identifier: str) -> Optional[bytes]:
        with self._lock:
            return self.users.get(identifier)

    def insert_user(self, identifier: str, password_hash: bytes) -> None:
        with self._lock:
            if identifier in self.users:
                raise AlreadyExists()
            self.users[identifier] = password_hash

    def insert_wellbeing_record(self, record: WellbeingRecord) -> None:
        with self._lock:
            self.records.append(record)

    def postcode_summary(self) -> list[dict]:
        with self._lock:
            rows = [(r.post_code, r.wellbeing_score) for r in self.records]
        return _summarize_postcodes(rows)

    def support_code_summary(self) -> list[dict]:
        with self._lock:
            rows = [
                (r.post_code, r.support_code, r.wellbeing_score)
                for r in self.records
            ]
        return _summarize_support_codes(rows)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.records.clear()


def make_engine(database_url: str):
    """Shared engine factory so the mailbox can reuse the credential database."""
    if not database_url:
        raise ValueError("DATABASE_URL is required for PostgresDbClient")
    kwargs = {"future": True, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        kwargs["pool_recycle"] = 1800
    return create_engine(database_url, **kwargs)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str | None = None, *, engine=None):
        self.engine = engine if engine is not None else make_engine(database_url)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except OperationalError as exc:
            logger.exception("Database unavailable")
            raise StoreUnavailable() from exc

    def user_exists(self, identifier: str) -> bool:
        with self._session() as session:
            return session.get(UserRow, identifier) is not None

    def get_password_hash(self, identifier: str) -> Optional[bytes]:
        with self._session() as session:
            row = session.get(UserRow, identifier)
            return row.password_hash if row else None

    def insert_user(self, identifier: str, password_hash: bytes) -> None:
        with self._session() as session:
            if session.get(UserRow, identifier) is not None:
                raise AlreadyExists()
            session.add(
                UserRow(
                    identifier=identifier,
                    password_hash=password_hash,
                    created_at=time.time(),
                )
            )
            try:
                session.commit()
            except IntegrityError as exc:
                # Lost a race with a concurrent registration.
                session.rollback()
                raise AlreadyExists() from exc

    def insert_wellbeing_record(self, record: WellbeingRecord) -> None:
        with self._session() as session:
            session.add(
                WellbeingRow(
                    post_code=record.post_code,
                    weekly_steps=record.weekly_steps,
                    wellbeing_score=record.wellbeing_score,
                    sputum_colour=record.sputum_colour,
                    mrc_dyspnoea_scale=record.mrc_dyspnoea_scale,
                    speech_rate_test=record.speech_rate_test,
                    test_duration=record.test_duration,
                    support_code=record.support_code,
                    date_sent=record.date_sent,
                    audio_url=record.audio_url,
                    created_at=record.created_at,
                )
            )
            session.commit()

    def postcode_summary(self) -> list[dict]:
        stmt = (
            select(
                WellbeingRow.post_code,
                func.avg(WellbeingRow.wellbeing_score),
                func.count(WellbeingRow.id),
            )
            .group_by(WellbeingRow.post_code)
            .order_by(WellbeingRow.post_code)
        )
        with self._session() as session:
            return [
                {"name": name, "avgscore": float(avg or 0.0), "quantity": quantity}
                for name, avg, quantity in session.execute(stmt)
            ]

    def support_code_summary(self) -> list[dict]:
        stmt = (
            select(
                WellbeingRow.post_code,
                WellbeingRow.support_code,
                func.avg(WellbeingRow.wellbeing_score),
                func.count(WellbeingRow.id),
            )
            .group_by(WellbeingRow.support_code, WellbeingRow.post_code)
            .order_by(WellbeingRow.support_code, WellbeingRow.post_code)
        )
        with self._session() as session:
            return [
                {
                    "name": name,
                    "supportcode": support_code,
                    "score": float(avg or 0.0),
                    "entries": entries,
                }
                for name, support_code, avg, entries in session.execute(stmt)
            ]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    identifier = Column(String, primary_key=True)
    password_hash = Column(LargeBinary, nullable=False)
    created_at = Column(Float, nullable=False)


class WellbeingRow(Base):
    __tablename__ = "scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_code = Column("postCode", String, nullable=False, index=True)
    weekly_steps = Column("weeklySteps", Integer, nullable=True)
    wellbeing_score = Column("wellbeingScore", Float, nullable=True)
    sputum_colour = Column("sputumColour", Float, nullable=True)
    mrc_dyspnoea_scale = Column("mrcDyspnoeaScale", Float, nullable=True)
    speech_rate_test = Column("speechRateTest", Float, nullable=True)
    test_duration = Column("testDuration", Float, nullable=True)
    support_code = Column("supportCode", String, nullable=False, index=True)
    date_sent = Column(String, nullable=True)
    audio_url = Column("audioUrl", String, nullable=False, default="")
    created_at = Column(Float, nullable=False)
