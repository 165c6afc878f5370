from __future__ import annotations

import argparse
import asyncio
import sys

from keywarden.persistence.kv import close_backend, get_backend
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import RecordStore
from keywarden.services.auth.tokens import TokenService


def _build_parser() -> argparse.ArgumentParser:
    # Address the user by email so operators do not need to look up ids.
    parser = argparse.ArgumentParser(
        description="Rotate a user's security stamp and delete all of their refresh tokens"
    )
    parser.add_argument("email", help="Email of the account to sign out everywhere")
    return parser


async def _revoke(email: str) -> int:
    backend = await get_backend()
    store = RecordStore(backend)
    try:
        user = await users_repo.find_by_email(store, email)
        if user is None:
            raise ValueError("User not found")
        await TokenService(store).revoke_user_sessions(user)
        await store.touch_revision_date(user.id)
    finally:
        await close_backend()
    print(f"Revoked all sessions for {user.email}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_revoke(args.email))
    except Exception as exc:  # noqa: BLE001 - surface revocation failures clearly
        print(f"revoke_sessions failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
