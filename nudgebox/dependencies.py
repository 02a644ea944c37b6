"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from nudgebox.audio import ArchiveExporter, AudioUploader
from nudgebox.blobs import BlobStore, CosBlobStore, InMemoryBlobStore, LocalBlobStore
from nudgebox.cipher import Cipher
from nudgebox.config import get_settings
from nudgebox.credentials import CredentialStore
from nudgebox.db import DbClient, InMemoryDbClient, PostgresDbClient
from nudgebox.errors import StoreUnavailable
from nudgebox.exchange import ExchangeService
from nudgebox.mailbox import (
    InMemoryMailboxStore,
    MailboxStore,
    RedisMailboxStore,
    SqlMailboxStore,
)
from nudgebox.wellbeing import MapSummaryCache

_db_client: DbClient | None = None
_mailbox_store: MailboxStore | None = None
_blob_store: BlobStore | None = None
_credential_store: CredentialStore | None = None
_exchange_service: ExchangeService | None = None
_map_cache: MapSummaryCache | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so credentials persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_mailbox_store() -> MailboxStore:
    """
    Redis when configured, else the SQL database, else in-memory.
    """
    global _mailbox_store
    if _mailbox_store:
        return _mailbox_store

    settings = get_settings()
    db = get_db_client()
    if settings.use_in_memory_backends:
        _mailbox_store = InMemoryMailboxStore(timeout=settings.store_timeout_seconds)
    elif settings.redis_url:
        _mailbox_store = RedisMailboxStore(
            url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            timeout=settings.store_timeout_seconds,
        )
    elif isinstance(db, PostgresDbClient):
        _mailbox_store = SqlMailboxStore(
            db.engine, timeout=settings.store_timeout_seconds
        )
    else:
        _mailbox_store = InMemoryMailboxStore(timeout=settings.store_timeout_seconds)
    return _mailbox_store


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store:
        return _blob_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _blob_store = InMemoryBlobStore()
    elif settings.cos_bucket:
        _blob_store = CosBlobStore(
            bucket=settings.cos_bucket,
            region=settings.cos_region or "",
            endpoint=settings.cos_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            prefix=settings.cos_prefix,
        )
    else:
        _blob_store = LocalBlobStore(settings.audio_dir)
    return _blob_store


def get_credential_store() -> CredentialStore:
    global _credential_store
    if _credential_store:
        return _credential_store

    settings = get_settings()
    _credential_store = CredentialStore(
        get_db_client(), rounds=settings.bcrypt_rounds
    )
    return _credential_store


def get_exchange_service() -> ExchangeService:
    global _exchange_service
    if _exchange_service:
        return _exchange_service

    _exchange_service = ExchangeService(get_credential_store(), get_mailbox_store())
    return _exchange_service


def get_map_cache() -> MapSummaryCache:
    global _map_cache
    if _map_cache:
        return _map_cache

    _map_cache = MapSummaryCache(get_db_client())
    return _map_cache


def get_archive_exporter() -> ArchiveExporter:
    settings = get_settings()
    return ArchiveExporter(
        get_blob_store(),
        skip_names=settings.export_skip_names,
        best_effort=settings.export_best_effort,
    )


def get_audio_uploader() -> AudioUploader:
    settings = get_settings()
    if not settings.audio_password:
        raise StoreUnavailable("Audio uploads are not configured.")
    try:
        audio_cipher = Cipher(settings.audio_password)
    except ValueError as exc:
        raise StoreUnavailable("Audio uploads are not configured.") from exc
    return AudioUploader(get_blob_store(), audio_cipher)


def reset_dependencies() -> None:
    """Drop cached singletons so the next request rebuilds them (tests)."""
    global _db_client, _mailbox_store, _blob_store
    global _credential_store, _exchange_service, _map_cache
    _db_client = None
    _mailbox_store = None
    _blob_store = None
    _credential_store = None
    _exchange_service = None
    _map_cache = None
