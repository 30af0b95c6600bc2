#!/usr/bin/env python3
"""Load venues.json and gold extraction JSON files into the pipeline database."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from backend.chs_spots.contracts import GoldRecord, VenueRecord, gold_promotions
from backend.chs_spots.logging_config import configure_structlog, get_logger
from backend.chs_spots.storage import PipelineStore

logger = get_logger("import_pipeline_data")


def _load_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8") or "null")


async def _import(database_url: str | None, venues_path: Path | None, gold_dir: Path | None) -> None:
    store = PipelineStore(database_url)
    try:
        await store.init()
        if venues_path is not None:
            payload = _load_json(venues_path) or []
            venues = []
            for item in payload:
                try:
                    venues.append(VenueRecord.model_validate(item))
                except ValidationError as exc:
                    logger.warning("venue_skipped", id=item.get("id"), error=str(exc))
            count = await store.venues.upsert_many(venues)
            logger.info("venues_imported", count=count, path=str(venues_path))

        if gold_dir is not None:
            imported = 0
            for path in sorted(gold_dir.glob("*.json")):
                payload = _load_json(path)
                if not isinstance(payload, dict):
                    logger.warning("gold_skipped", path=str(path), reason="not an object")
                    continue
                try:
                    record = GoldRecord.model_validate(
                        {**payload, "promotions": gold_promotions(payload)}
                    )
                except ValidationError as exc:
                    logger.warning("gold_skipped", path=str(path), error=str(exc))
                    continue
                if not record.venue_id:
                    record = record.model_copy(update={"venue_id": path.stem})
                await store.gold.upsert(record)
                imported += 1
            logger.info("gold_imported", count=imported, path=str(gold_dir))
    finally:
        await store.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--venues", type=Path, default=None, help="venues.json (array)")
    parser.add_argument("--gold-dir", type=Path, default=None, help="directory of <venueId>.json")
    args = parser.parse_args(argv)

    if args.venues is None and args.gold_dir is None:
        parser.error("nothing to import: pass --venues and/or --gold-dir")

    configure_structlog()
    asyncio.run(_import(args.database_url, args.venues, args.gold_dir))
    return 0


if __name__ == "__main__":
    sys.exit(main())
