#!/usr/bin/env python3
"""
Script to create the first program leader account.
"""
import sys
from getpass import getpass
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import Database
from database.models import UserRole
from services.auth_service import AuthService
import config


def create_program_leader():
    """Create a program leader user."""
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    if config.CREATE_TABLES_ON_STARTUP:
        config.db.create_tables()

    print("Creating Program Leader user...")
    print("=" * 50)

    full_name = input("Full name: ").strip()
    email = input("Email: ").strip()
    password = getpass("Password: ").strip()

    if not full_name or not email or not password:
        print("Error: Full name, email and password are required")
        sys.exit(1)

    try:
        with config.db.get_session() as db:
            user = AuthService.create_user(
                db=db,
                full_name=full_name,
                email=email,
                password=password,
                role=UserRole.PROGRAM_LEADER
            )
            print(f"\n✓ Program Leader created successfully!")
            print(f"  ID: {user.user_id}")
            print(f"  Email: {user.email}")
            print(f"  Role: {user.role.value}")
            print(f"\nYou can now login at: POST /api/auth/login")
    except ValueError as e:
        print(f"\n✗ Error: {e}")
        sys.exit(1)
    finally:
        config.db.dispose()


if __name__ == "__main__":
    create_program_leader()
