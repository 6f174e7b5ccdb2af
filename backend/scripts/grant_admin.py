"""Promote an existing account to admin.
Usage: python scripts/grant_admin.py --email EMAIL [--revoke]

Operator path for bootstrapping the first admin; afterwards admins use
`PATCH /accounts/{id}/role`.
"""
import sys
import argparse
import logging
import pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from tracker.database import create_db_and_tables, engine
from tracker import repositories
from tracker.identity import normalize_email

logger = logging.getLogger("tracker.scripts")


def main(email: str, revoke: bool = False) -> int:
    create_db_and_tables()
    role = 'student' if revoke else 'admin'
    with Session(engine) as session:
        accounts = repositories.AccountRepository(session)
        account = accounts.get_by_email(normalize_email(email))
        if account is None:
            print(f'No account found for {email}')
            return 1
        if account.role == role:
            print(f'{account.email} already has role {role}')
            return 0
        account.role = role
        accounts.save(account)
        session.commit()
    logger.warning("role_assigned_by_operator email=%s role=%s", email, role)
    print(f'{email} is now {role}')
    return 0


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser()
    parser.add_argument('--email', required=True, help='Email of the account to promote')
    parser.add_argument('--revoke', action='store_true', help='Demote the account back to student')
    args = parser.parse_args()
    sys.exit(main(args.email, revoke=args.revoke))
