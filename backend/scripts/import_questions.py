"""CLI script to bulk-import questions into a test section.

Usage: python scripts/import_questions.py TEST_ID SECTION_ID FILE [FILE ...] [--dry-run] [--keep-duplicates]

Accepts the same formats as the admin upload endpoint (JSON, CSV, TXT, DOCX).
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `studyabroad` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from studyabroad.database import create_db_and_tables, open_session
from studyabroad.errors import ServiceError
from studyabroad.services.test_prep import QuestionImportService


def main(test_id: int, section_id: int, files, dry_run: bool = False, deduplicate: bool = True) -> int:
    """Import every file into the section and print a per-file summary.

    Returns the process exit code: 1 when any file failed outright.
    """
    create_db_and_tables()
    failed = False
    total_created = 0
    total_skipped = 0
    with open_session() as session:
        svc = QuestionImportService(session)
        for f in files:
            path = pathlib.Path(f)
            try:
                result = svc.import_file(test_id, section_id, path.read_bytes(), path.name,
                                         deduplicate=deduplicate, dry_run=dry_run)
            except (OSError, ValueError, ServiceError) as e:
                failed = True
                print(f'Error importing {path}: {e}')
                continue
            total_created += result['created']
            total_skipped += result['skipped']
            print(f"Imported {path}: created {result['created']}, skipped {result['skipped']}, "
                  f"errors {len(result['errors'])}")
            for err in result['errors']:
                print(f"  item {err['index']}: {err['error']}")
    suffix = ' (dry run)' if dry_run else ''
    print(f'Total created questions: {total_created}, skipped {total_skipped}{suffix}')
    return 1 if failed else 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('test_id', type=int)
    parser.add_argument('section_id', type=int)
    parser.add_argument('files', nargs='+')
    parser.add_argument('--dry-run', action='store_true', help='Validate without writing')
    parser.add_argument('--keep-duplicates', action='store_true', help='Import questions already in the section')
    args = parser.parse_args()
    sys.exit(main(args.test_id, args.section_id, args.files, dry_run=args.dry_run,
                  deduplicate=not args.keep_duplicates))
