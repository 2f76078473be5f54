"""Create (or look up) a user and print a bearer token for it.

Usage: python scripts/create_user.py EMAIL [--admin] [--hours N]

Handy for local testing of the exam endpoints with curl or the
Swagger UI at /docs.
"""

import sys
import argparse
import pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from quizforce.database import engine, create_db_and_tables
from quizforce import models, repositories, services


def main(email: str, admin: bool = False, hours: int = 24):
    create_db_and_tables()
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        user = repo.get_by_email(email)
        if not user:
            user = repo.create(models.User(email=email, role='admin' if admin else 'user'))
            print(f'Created user {user.id} ({user.role})')
        print(services.issue_token(user, expire_hours=hours))


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('email')
    parser.add_argument('--admin', action='store_true', help='Create the user with the admin role')
    parser.add_argument('--hours', type=int, default=24, help='Token lifetime in hours')
    args = parser.parse_args()
    main(args.email, admin=args.admin, hours=args.hours)
