#!/usr/bin/env python3
"""Import one or more bill PDFs for a unit.

Runs as a dry run by default: bills are extracted and deduplicated and the
result is printed, nothing is written.  Pass --apply to persist.

    python scripts/import_bills.py House bills/2025-*.pdf
    python scripts/import_bills.py House bills/ --utility-type gas --apply
"""
import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from utility_ingestion.config import Settings
from utility_ingestion.errors import IngestionError
from utility_ingestion.extraction.bill_extractor import BillExtractor
from utility_ingestion.extraction.clients import build_llm_client
from utility_ingestion.ingestion.service import IngestionService, parse_utility_type
from utility_ingestion.reconciliation.deduplication import deduplicate_bill_entries, drop_already_recorded
from utility_ingestion.registry.units import provision_unit
from utility_ingestion.storage.database import close_db, get_session_factory
from utility_ingestion.storage.store import SqlUtilityStore
from utility_ingestion.utils.logging import setup_logging


def collect_pdfs(paths: list[str]) -> list[Path]:
    """Expand directories to their *.pdf files, sorted by name."""
    pdfs: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            pdfs.extend(sorted(path.glob("*.pdf")))
        elif path.exists():
            pdfs.append(path)
        else:
            print(f"Warning: skipping missing path {raw}")
    return pdfs


async def preview_bill(extractor, store, unit, path: Path, args) -> None:
    utility = parse_utility_type(args.utility_type) if args.utility_type else None
    extraction = await extractor.extract(path.read_bytes(), path.name, args.timezone, utility)
    deduped = deduplicate_bill_entries(extraction.entries)
    existing = await store.find_existing(unit.id, [e.captured_at for e in deduped.kept])
    fresh = drop_already_recorded(deduped.kept, existing)

    for entry in fresh.kept:
        period = f" {entry.period_start}..{entry.period_end}" if entry.period_start else ""
        print(f"  + {entry.utility_type} {entry.entry_type} {entry.reading_value:g} {entry.reading_unit}"
              f" at {entry.captured_at.isoformat()}{period}")
    for removal in [*deduped.removed, *fresh.removed]:
        print(f"  - {removal.reason}")
    for charge in extraction.charges:
        print(f"  $ {charge.utility_type} {charge.total_charges_cad:.2f} CAD"
              f" ({charge.period_start}..{charge.period_end})")
    for rejected in extraction.rejected:
        print(f"  ! rejected: {rejected['reason']}")


async def main(args: argparse.Namespace) -> int:
    settings = Settings()
    setup_logging(settings.log_level, json_output=False)
    args.timezone = args.timezone or settings.timezone

    pdfs = collect_pdfs(args.paths)
    if not pdfs:
        print("Error: no PDF files found")
        return 1

    store = SqlUtilityStore(get_session_factory())
    extractor = BillExtractor(
        build_llm_client(settings, settings.bill_extraction_model),
        dpi=settings.pdf_dpi,
        temperature=settings.llm_temperature,
    )
    service = IngestionService(store, settings, bill_extractor=extractor)
    failures = 0
    try:
        unit = await store.get_unit_by_name(args.unit)
        if unit is None:
            if not args.create_unit:
                print(f"Error: unit '{args.unit}' not found (use --create-unit)")
                return 1
            unit = provision_unit(args.unit)
            if args.apply:
                await store.add_unit(unit)
            print(f"Created unit {unit.name} ({', '.join(unit.utility_types)})")

        mode = "APPLY" if args.apply else "DRY RUN"
        print(f"{mode}: {len(pdfs)} bill(s) for {unit.name}")
        print("-" * 50)
        for path in pdfs:
            print(path.name)
            try:
                if args.apply:
                    result = await service.ingest_bill(
                        unit.id, path.read_bytes(), path.name,
                        utility_type=args.utility_type, timezone=args.timezone,
                    )
                    print(f"  inserted {result.inserted_count}, removed {len(result.removed)}, "
                          f"charges {len(result.charges_upserted)}, daily rows {result.daily_rows_rebuilt}")
                else:
                    await preview_bill(extractor, store, unit, path, args)
            except IngestionError as e:
                failures += 1
                print(f"  Error ({e.category}): {e.message}")
    finally:
        await close_db()

    if not args.apply:
        print("\nDry run only. Re-run with --apply to persist.")
    return 1 if failures else 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("unit", help="unit name, e.g. House")
    parser.add_argument("paths", nargs="+", help="bill PDFs or directories of PDFs")
    parser.add_argument("--utility-type", choices=["electricity", "gas", "water"])
    parser.add_argument("--timezone", help="IANA zone for dates on the bill")
    parser.add_argument("--create-unit", action="store_true", help="provision the unit if it does not exist")
    parser.add_argument("--apply", action="store_true", help="write readings and charges")
    return parser.parse_args(argv)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
