#!/usr/bin/env python3
"""
Создание схемы БД реестра и первого администратора.
Запуск: python3 scripts/init_db.py [--admin LOGIN]
"""
import argparse
import asyncio
import getpass
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

from serverhub.auth import hash_password
from serverhub.database import local_db
from serverhub.database.repositories import user_repo


async def main(admin: str | None):
    await local_db.init_pool()
    try:
        print("Schema is up to date")
        if admin:
            password = getpass.getpass(f"Password for {admin}: ")
            if not password:
                print("Empty password, admin not created")
                return
            await user_repo.create_user(admin, hash_password(password), "admin")
            print(f"Admin {admin} created")
    finally:
        await local_db.close_pool()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize serverhub database")
    parser.add_argument("--admin", help="create or reset an admin user")
    args = parser.parse_args()
    asyncio.run(main(args.admin))
