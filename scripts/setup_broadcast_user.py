"""
Create the SYSTEM BROADCAST account that emergency broadcasts are addressed to.

Broadcast messages reference this user through the messages.recipient_id
foreign key, so sending one fails until the row exists.

Usage:
    python scripts/setup_broadcast_user.py [--dry-run]
"""
import argparse
import asyncio
import os
import secrets
import sys

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from groundops.auth.security import get_password_hash
from groundops.config import settings
from groundops.models.tables import USERS
from groundops.store.provider import MutationOp, get_remote_store


BROADCAST_ROW = {
    "name": "SYSTEM BROADCAST",
    "username": "system_broadcast",
    "role": "admin",
    "staff_id": "SYS-000",
    "department": "Operations",
    # never logs in: random secret, inactive
    "status": "inactive",
}


async def setup_broadcast_user(dry_run: bool = False) -> int:
    store = get_remote_store(settings)
    try:
        users = await store.fetch_all(USERS)
        if users is None:
            print("ERROR: Could not read the users table. Check SUPABASE_URL and SUPABASE_ANON_KEY.")
            return 1
        existing = next((u for u in users if u.id == settings.broadcast_user_id), None)
        if existing is not None:
            print(f"[OK] Broadcast user already exists: {existing.name} ({existing.id})")
            return 0

        row = {**BROADCAST_ROW, "id": settings.broadcast_user_id}
        if dry_run:
            print(f"[DRY RUN] Would create broadcast user {row['id']}")
            return 0
        row["password"] = get_password_hash(secrets.token_urlsafe(24))
        result = await store.mutate(USERS, MutationOp.INSERT, payload=row)
        if not result.ok:
            print(f"ERROR: Insert failed ({result.kind}): {result.error}")
            return 1
        print(f"[CREATED] Broadcast user {row['id']}")
        return 0
    finally:
        await store.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the SYSTEM BROADCAST user")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be created without writing")
    args = parser.parse_args()
    sys.exit(asyncio.run(setup_broadcast_user(dry_run=args.dry_run)))
