"""CLI script to import practice exam JSON files into the backend DB.
Usage: python scripts/import_exams.py ROOT [--certification NAME] [--dry-run]
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `quizforce` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from quizforce.database import engine, create_db_and_tables
from quizforce import services
from quizforce.utils.exam_loader import find_exam_files


def main(exams_root: pathlib.Path, certification: Optional[str] = None, dry_run: bool = False):
    """Scan `exams_root` for exam definitions and import them.

    The optional `certification` restricts discovery to
    `exams_root/<certification>`. Results are printed to stdout for a
    quick CLI feedback loop.
    """
    if not exams_root.exists():
        print(f'Exams folder not found at {exams_root}')
        return 1
    files = find_exam_files(exams_root, certification=certification)
    if not files:
        print('No files found to import')
        return 0
    create_db_and_tables()
    with Session(engine) as session:
        svc = services.ImportService(session)
        total_created = 0
        for f in files:
            try:
                result = svc.import_file(f.read_bytes(), f.name, dry_run=dry_run)
            except ValueError as e:
                print(f'Error importing {f}: {e}')
                continue
            total_created += result['created']
            print(f"Imported {f}: exam {result['practice_exam_id']}, created {result['created']}, "
                  f"skipped {result['skipped']}, errors {len(result['errors'])}")
        print(f'Total created questions: {total_created}')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('root', type=pathlib.Path, help='Folder holding exam JSON files')
    parser.add_argument('--certification', help='Import only from this sub-folder')
    parser.add_argument('--dry-run', action='store_true', help='Validate without writing')
    args = parser.parse_args()
    sys.exit(main(args.root, certification=args.certification, dry_run=args.dry_run))
