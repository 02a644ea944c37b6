"""
CLI helper to decrypt the audio blob store into a zip archive on disk.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from nudgebox.audio import ArchiveExporter
from nudgebox.config import get_settings
from nudgebox.dependencies import get_blob_store
from nudgebox.errors import NudgeboxError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Export decrypted audio as a zip")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("archive.zip"),
        help="Where to write the archive",
    )
    parser.add_argument(
        "--best-effort",
        action="store_true",
        help="Skip blobs that fail to decrypt instead of aborting",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    secret = settings.audio_password
    if not secret:
        logger.error("AUDIO_PASSWORD is not set")
        return 2

    exporter = ArchiveExporter(
        get_blob_store(),
        skip_names=settings.export_skip_names,
        best_effort=args.best_effort or settings.export_best_effort,
    )
    try:
        result = exporter.export(secret)
    except NudgeboxError as exc:
        logger.error("Export failed: %s", exc.reason)
        return 1

    args.output.write_bytes(result.archive)
    logger.info("Wrote %d files to %s", len(result.names), args.output)
    for name in result.skipped:
        logger.warning("Skipped %s", name)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
