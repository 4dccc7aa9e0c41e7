import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from gradadmin.db import Base, SessionLocal, engine  # noqa: E402
from gradadmin.importer import IMPORTABLE_KINDS, import_rows, load_sheet, sheet_records  # noqa: E402
from gradadmin.logging_config import setup_logging  # noqa: E402


def parse_args():
    p = argparse.ArgumentParser(description="Import a course/job/faculty/semester/student sheet into the database.")
    p.add_argument("file", help="Path to an .xlsx or .csv sheet")
    p.add_argument("--kind", required=True, choices=IMPORTABLE_KINDS, help="Entity kind the sheet holds")
    p.add_argument("--preamble", type=int, default=None, help="Rows to skip at the top (default: IMPORT_PREAMBLE_ROWS)")
    p.add_argument("--dry-run", action="store_true", help="Parse and map the rows without writing")
    p.add_argument("--json", action="store_true", help="Print the full report as JSON")
    return p.parse_args()


def main():
    args = parse_args()
    setup_logging()
    path = Path(args.file).resolve()
    if not path.exists():
        raise SystemExit(f"File not found: {path}")

    records = sheet_records(load_sheet(path.read_bytes(), path.name), args.kind, preamble=args.preamble)
    if args.dry_run:
        print(f"{path.name}: {len(records)} {args.kind} rows")
        for row, record in records:
            print(f"  row {row}: {record}")
        return

    Base.metadata.create_all(engine)
    report = import_rows(SessionLocal, records, args.kind, filename=path.name)
    if args.json:
        print(json.dumps(report.model_dump(), indent=2))
        return
    print(f"{path.name}: {report.total_rows} rows, {report.created} created, {report.skipped} skipped, {report.failed} failed")
    for r in report.errors:
        print(f"  row {r.row}: {r.message}")


if __name__ == "__main__":
    main()
