"""
Storage abstraction for encrypted audio blobs.

Blobs live in a local directory by default, in Tencent COS (S3-compatible)
when a bucket is configured, and in memory for tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from nudgebox.errors import NotFound, StoreUnavailable


class BlobStore(Protocol):
    """Defines the operations the service needs from blob storage."""

    def list_names(self) -> list[str]:
        ...

    def read(self, name: str) -> bytes:
        ...

    def write(self, name: str, data: bytes) -> None:
        ...


def _check_name(name: str) -> str:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ValueError(f"Invalid blob name: {name!r}")
    return name


@dataclass
class InMemoryBlobStore:
    """Test double for blob storage."""

    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def list_names(self) -> list[str]:
        return sorted(self.stored_objects)

    def read(self, name: str) -> bytes:
        stored = self.stored_objects.get(name)
        if stored is None:
            raise NotFound(f"Blob {name} not found.")
        return stored

    def write(self, name: str, data: bytes) -> None:
        self.stored_objects[_check_name(name)] = bytes(data)


def _is_partial_write(name: str) -> bool:
    return name.startswith(".") and name.endswith(".part")


@dataclass
class LocalBlobStore:
    """Blobs as flat files in one directory."""

    directory: str

    def list_names(self) -> list[str]:
        root = Path(self.directory)
        if not root.is_dir():
            raise NotFound("Audio directory not found.")
        return sorted(
            entry.name
            for entry in root.iterdir()
            if entry.is_file() and not _is_partial_write(entry.name)
        )

    def read(self, name: str) -> bytes:
        path = Path(self.directory) / _check_name(name)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"Blob {name} not found.") from exc

    def write(self, name: str, data: bytes) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = Path(self.directory) / _check_name(name)
        tmp_path = path.with_name(f".{path.name}.part")
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)


@dataclass
class CosBlobStore:
    """
    S3-compatible blob storage for Tencent COS.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    prefix: str = "Audio/"

    def __post_init__(self):
        # Use virtual-hosted style addressing to satisfy COS requirements.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def list_names(self) -> list[str]:
        names: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(self.prefix):]
                    if name and "/" not in name:
                        names.append(name)
        except (BotoCoreError, ClientError) as exc:
            raise StoreUnavailable() from exc
        return sorted(names)

    def read(self, name: str) -> bytes:
        key = self.prefix + _check_name(name)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFound(f"Blob {name} not found.") from exc
            raise StoreUnavailable() from exc
        except BotoCoreError as exc:
            raise StoreUnavailable() from exc
        return response["Body"].read()

    def write(self, name: str, data: bytes) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self.prefix + _check_name(name),
                Body=data,
                ContentType="application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreUnavailable() from exc
