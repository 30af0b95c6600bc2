#!/usr/bin/env python3
"""Rebuild automated spots from gold extractions (run under the pipeline lock)."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

from backend.chs_spots.llm_client import close_client
from backend.chs_spots.logging_config import configure_structlog, get_logger, run_id_ctx
from backend.chs_spots.pipeline import CreateSpotsReport, run_create_spots
from backend.chs_spots.pipeline_lock import PipelineLock
from backend.chs_spots.settings import settings
from backend.chs_spots.storage import PipelineStore

SCRIPT_NAME = "create-spots"

logger = get_logger("create_spots")


async def _run(args: argparse.Namespace) -> CreateSpotsReport:
    store = PipelineStore(args.database_url)
    try:
        await store.init()
        return await run_create_spots(
            store,
            credentials=None if args.skip_llm else settings.llm_credentials(),
            public_dir=args.public_dir,
        )
    finally:
        await close_client()
        await store.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create spots from gold extractions.")
    parser.add_argument("--database-url", default=None, help="Defaults to DATABASE_URL / data dir")
    parser.add_argument("--public-dir", type=Path, default=settings.PUBLIC_DIR)
    parser.add_argument(
        "--review-file",
        type=Path,
        default=None,
        help="Where to write confidence-review.json (defaults to the data dir)",
    )
    parser.add_argument("--skip-llm", action="store_true", help="Send all flags to human review")
    parser.add_argument("--debug", action="store_true", help="Console logs at DEBUG level")
    args = parser.parse_args(argv)

    configure_structlog(
        json_logs=False if args.debug else None,
        level=logging.DEBUG if args.debug else logging.INFO,
    )
    run_id_ctx.set(uuid.uuid4().hex[:12])

    lock = PipelineLock(
        settings.pipeline_lock_path, SCRIPT_NAME, stale_after=settings.PIPELINE_LOCK_STALE_SECONDS
    )
    status = lock.acquire()
    if not status.acquired:
        logger.error(
            "pipeline_locked",
            holder=status.holder,
            pid=status.pid,
            age_seconds=round(status.age_seconds or 0),
        )
        return 1

    try:
        report = asyncio.run(_run(args))
    finally:
        lock.release()

    review_path = args.review_file or settings.data_dir / "reporting" / "confidence-review.json"
    review_path.parent.mkdir(parents=True, exist_ok=True)
    review_path.write_text(json.dumps(report.review_file(), indent=2), encoding="utf-8")
    logger.info(
        "confidence_review_written",
        path=str(review_path),
        flagged=len(report.flagged),
        rejected=len(report.rejected),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
