"""
CLI helper to encrypt local audio files into the configured blob store.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from nudgebox.audio import AudioUploader
from nudgebox.cipher import Cipher
from nudgebox.config import get_settings
from nudgebox.dependencies import get_blob_store

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Encrypt audio into the blob store")
    parser.add_argument("files", nargs="+", type=Path, help="Audio files to store")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    if not settings.audio_password:
        logger.error("AUDIO_PASSWORD is not set")
        return 2
    uploader = AudioUploader(get_blob_store(), Cipher(settings.audio_password))

    for path in args.files:
        name = uploader.upload(path.read_bytes(), suffix=path.suffix or ".m4a")
        print(f"{path} -> {name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
