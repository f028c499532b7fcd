#!/usr/bin/env python3
"""Load daily weather from a CSV and rebuild every unit's daily series.

CSV columns: date, temp_min_c, temp_max_c, temp_avg_c, precipitation_mm.
Blank cells are stored as unknown.  Dry run unless --apply is given.

    python scripts/import_weather.py weather/west-vancouver-2025.csv --apply
"""
import argparse
import asyncio
import csv
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from utility_ingestion.config import Settings
from utility_ingestion.ingestion.service import IngestionService
from utility_ingestion.stats.weather import build_weather_day
from utility_ingestion.storage.database import close_db, get_session_factory
from utility_ingestion.storage.store import SqlUtilityStore
from utility_ingestion.utils.logging import setup_logging


def _optional_float(value: str | None) -> float | None:
    value = (value or "").strip()
    return float(value) if value else None


def read_weather_csv(path: Path, location: str):
    with open(path, newline="") as f:
        for row in csv.DictReader(f):
            yield build_weather_day(
                date.fromisoformat(row["date"].strip()),
                temp_min_c=_optional_float(row.get("temp_min_c")),
                temp_max_c=_optional_float(row.get("temp_max_c")),
                temp_avg_c=_optional_float(row.get("temp_avg_c")),
                precipitation_mm=_optional_float(row.get("precipitation_mm")),
                location=location,
            )


async def main(args: argparse.Namespace) -> int:
    path = Path(args.csv_path)
    if not path.exists():
        print(f"Error: File not found: {args.csv_path}")
        return 1

    settings = Settings()
    setup_logging(settings.log_level, json_output=False)
    days = list(read_weather_csv(path, args.location))
    print(f"Read {len(days)} weather day(s) from {path.name}")
    if not args.apply:
        for day in days[:10]:
            print(f"  {day.day} avg={day.temp_avg_c} hdd={day.hdd} cdd={day.cdd} precip={day.precipitation_mm}")
        print("\nDry run only. Re-run with --apply to persist.")
        return 0

    store = SqlUtilityStore(get_session_factory())
    service = IngestionService(store, settings)
    try:
        for day in days:
            await store.upsert_weather_day(day)
        for unit in await store.list_units():
            count = await service.rebuild_daily_series(unit.id)
            print(f"  {unit.name}: {count} daily row(s)")
    finally:
        await close_db()
    print(f"Stored {len(days)} weather day(s)")
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("csv_path")
    parser.add_argument("--location", default="West Vancouver, BC")
    parser.add_argument("--apply", action="store_true", help="write weather and rebuild daily series")
    return parser.parse_args(argv)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
