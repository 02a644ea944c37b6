"""
Encrypted audio upload and bulk export.

Uploads are encrypted before they reach the blob store. Exports decrypt every
blob into a per-request temporary directory, zip them there and hand back the
archive bytes. The directory, holding the plaintexts and the zip, is removed
before ``export`` returns or raises.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
import zipfile
from dataclasses import dataclass, field
from typing import Iterable, Optional

from nudgebox import cipher
from nudgebox.blobs import BlobStore
from nudgebox.cipher import Cipher
from nudgebox.errors import AuthenticationFailure

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "archive.zip"


@dataclass
class ExportResult:
    archive: bytes
    names: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class ArchiveExporter:
    """
    Decrypts all blobs with a caller-supplied secret into one zip archive.

    By default the export fails closed: one blob that does not authenticate
    aborts the whole export. With ``best_effort`` such blobs are left out of the
    archive and reported in ``ExportResult.skipped``.
    """

    def __init__(
        self,
        blobs: BlobStore,
        *,
        skip_names: Iterable[str] = (".DS_Store",),
        best_effort: bool = False,
        work_dir: Optional[str] = None,
    ):
        self.blobs = blobs
        self.skip_names = frozenset(skip_names)
        self.best_effort = best_effort
        self.work_dir = work_dir

    def export(self, secret: bytes | str) -> ExportResult:
        names = [n for n in self.blobs.list_names() if n not in self.skip_names]
        exported: list[str] = []
        skipped: list[str] = []

        with tempfile.TemporaryDirectory(
            prefix="nudgebox-export-", dir=self.work_dir
        ) as work:
            plain_dir = os.path.join(work, "plain")
            os.mkdir(plain_dir)
            archive_path = os.path.join(work, ARCHIVE_NAME)

            with zipfile.ZipFile(
                archive_path, "w", compression=zipfile.ZIP_DEFLATED
            ) as archive:
                for name in names:
                    try:
                        plaintext = cipher.decrypt(self.blobs.read(name), secret)
                    except AuthenticationFailure:
                        if not self.best_effort:
                            logger.warning("Export aborted: %s failed to decrypt", name)
                            raise
                        logger.warning("Skipping %s: failed to decrypt", name)
                        skipped.append(name)
                        continue

                    plain_path = os.path.join(plain_dir, name)
                    with open(plain_path, "wb") as f:
                        f.write(plaintext)
                    archive.write(plain_path, arcname=name)
                    os.remove(plain_path)
                    exported.append(name)

            with open(archive_path, "rb") as f:
                data = f.read()

        logger.info(
            "Exported %d audio files (%d skipped)", len(exported), len(skipped)
        )
        return ExportResult(archive=data, names=exported, skipped=skipped)


class AudioUploader:
    """Encrypts uploaded audio with the configured key and stores it."""

    def __init__(self, blobs: BlobStore, audio_cipher: Cipher):
        self.blobs = blobs
        self.cipher = audio_cipher

    def upload(self, data: bytes, suffix: str = ".m4a") -> str:
        name = f"{uuid.uuid4().hex[:8]}-{uuid.uuid4()}{suffix}"
        self.blobs.write(name, self.cipher.encrypt(data))
        logger.info("Stored encrypted audio %s (%d bytes)", name, len(data))
        return name
