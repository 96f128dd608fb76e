"""CLI script to publish weekly question sets from a JSON file.

The file holds a list of items with `week_number`, `year`, `title`,
`description` and `questions` (each with `id`, `prompt`, `choices`,
`correct_choice`, ...).
Usage: python scripts/import_weeks.py FILE --contest CONTEST_ID [--dry-run]
"""
import sys
import argparse
import json
import pathlib
# Ensure `backend/` is on sys.path so `exam_prep` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from exam_prep.database import engine, create_db_and_tables
from exam_prep import services


def main(path: str, contest_id: str, dry_run: bool = False) -> int:
    source = pathlib.Path(path)
    if not source.exists():
        print(f'File not found: {source}')
        return 1
    items = json.loads(source.read_text(encoding='utf-8'))
    if not isinstance(items, list):
        print('Import file must contain a JSON list')
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        result = services.WeekContentImportService(session).import_sets(contest_id, items, dry_run=dry_run)
    for err in result['errors']:
        print(f"Item {err['index']} rejected: {err['error']}")
    print(f"Created {result['created']}, skipped {result['skipped']}, errors {len(result['errors'])}")
    return 1 if result['errors'] else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('path', help='JSON file with the week sets')
    parser.add_argument('--contest', required=True, help='contest the weeks belong to')
    parser.add_argument('--dry-run', action='store_true', help='validate without writing')
    args = parser.parse_args()
    sys.exit(main(args.path, args.contest, dry_run=args.dry_run))
