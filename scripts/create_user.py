"""
Create a login account for usagegate.

Usage:
    python scripts/create_user.py alice
    python scripts/create_user.py alice --password s3cret
"""
import argparse
import asyncio
import getpass
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.exc import IntegrityError

from usagegate.app.db import close_async_engine, create_user, get_async_session, init_async_db


async def _create(username: str, password: str) -> int:
    await init_async_db()
    try:
        async with get_async_session() as session:
            try:
                user = await create_user(session, username, password)
            except IntegrityError:
                print(f"User '{username}' already exists")
                return 1
            print(f"Created user '{user.username}' (id={user.id})")
            return 0
    finally:
        await close_async_engine()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a usagegate login account")
    parser.add_argument("username")
    parser.add_argument("--password", help="Prompted for when omitted")
    args = parser.parse_args()
    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("Password cannot be empty")
        return 1
    return asyncio.run(_create(args.username.strip(), password))


if __name__ == "__main__":
    sys.exit(main())
