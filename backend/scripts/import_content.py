"""CLI script to import a JSON content tree into the backend DB.
Usage: python scripts/import_content.py FILE --admin-email EMAIL [--dry-run]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `tracker` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from tracker.database import create_db_and_tables, engine
from tracker import repositories, services
from tracker.errors import TrackerError
from tracker.identity import normalize_email
from tracker.policy import resolve_caller


def main(path: pathlib.Path, admin_email: str, dry_run: bool = False) -> int:
    """Import `path` on behalf of the admin account `admin_email`.

    The import runs through the same policy checks as the HTTP API, so
    the named account must hold the admin role.
    """
    if not path.exists():
        print(f'File not found: {path}')
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        account = repositories.AccountRepository(session).get_by_email(normalize_email(admin_email))
        if account is None:
            print(f'No account found for {admin_email}')
            return 1
        caller = resolve_caller(session, account.id, email=account.email)
        try:
            result = services.ImportService(session, caller).import_file(path.read_bytes(), path.name, dry_run=dry_run)
        except (ValueError, TrackerError) as e:
            print(f'Error importing {path}: {e}')
            return 1
    prefix = 'Would create' if dry_run else 'Created'
    print(f"{prefix} {result['created']} subjects, skipped {result['skipped']}, errors {len(result['errors'])}")
    for err in result['errors']:
        print(f"  item {err['index']}: {err['error']}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('file', type=pathlib.Path, help='JSON file with a list of subjects')
    parser.add_argument('--admin-email', required=True, help='Admin account the import runs as')
    parser.add_argument('--dry-run', action='store_true', help='Validate without writing')
    args = parser.parse_args()
    sys.exit(main(args.file, args.admin_email, dry_run=args.dry_run))
