"""
Rehash every plaintext password left in the users table.

Logins already upgrade a legacy password on the fly; this script does the
same for accounts that have not logged in since. Empty passwords are left
alone (those accounts sign in with the default password).

Usage:
    python scripts/hash_legacy_passwords.py [--dry-run]
"""
import argparse
import asyncio
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from groundops.auth.security import get_password_hash, is_hashed
from groundops.config import settings
from groundops.models.tables import USERS
from groundops.store.provider import MutationOp, get_remote_store


async def hash_legacy_passwords(dry_run: bool = False) -> int:
    store = get_remote_store(settings)
    try:
        users = await store.fetch_all(USERS)
        if users is None:
            print("ERROR: Could not read the users table. Check SUPABASE_URL and SUPABASE_ANON_KEY.")
            return 1
        legacy = [u for u in users if u.password and not is_hashed(u.password)]
        print(f"Found {len(legacy)} user(s) with a plaintext password out of {len(users)}")

        failed = 0
        for user in legacy:
            if dry_run:
                print(f"[DRY RUN] Would rehash {user.username}")
                continue
            result = await store.mutate(
                USERS,
                MutationOp.UPDATE,
                payload={"password": get_password_hash(user.password)},
                match={"id": user.id},
            )
            if result.ok:
                print(f"[HASHED] {user.username}")
            else:
                failed += 1
                print(f"[FAILED] {user.username}: {result.error}")
        return 1 if failed else 0
    finally:
        await store.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Hash plaintext passwords in the users table")
    parser.add_argument("--dry-run", action="store_true", help="List affected users without writing")
    args = parser.parse_args()
    sys.exit(asyncio.run(hash_legacy_passwords(dry_run=args.dry_run)))
