from __future__ import annotations

import argparse
import asyncio
import sys

from keywarden.persistence.kv import close_backend, get_backend
from keywarden.persistence.repos import ciphers as ciphers_repo
from keywarden.persistence.repos import users as users_repo
from keywarden.persistence.store import (
    KIND_ATTACHMENT,
    KIND_CIPHER,
    KIND_FOLDER,
    RecordStore,
)


def _build_parser() -> argparse.ArgumentParser:
    # Default to every user; a single id narrows the repair for targeted incidents.
    parser = argparse.ArgumentParser(description="Rebuild per-owner indexes from stored records")
    parser.add_argument("--user", help="Only reconcile indexes owned by this user id")
    return parser


async def _reconcile(args: argparse.Namespace) -> int:
    backend = await get_backend()
    store = RecordStore(backend)
    try:
        user_ids = [args.user] if args.user else await users_repo.list_user_ids(store)
        changed = 0
        for user_id in user_ids:
            reports = [
                await store.reconcile_index(KIND_CIPHER, user_id),
                await store.reconcile_index(KIND_FOLDER, user_id),
            ]
            # Attachment indexes are keyed by cipher, so walk the repaired cipher index.
            for cipher in await ciphers_repo.list_by_user(store, user_id):
                reports.append(await store.reconcile_index(KIND_ATTACHMENT, cipher.id))
            for report in reports:
                if not report.changed:
                    continue
                changed += 1
                print(
                    f"{report.kind}\t{report.owner_id}\tadded={len(report.added)}\tremoved={len(report.removed)}"
                )
        print(f"Reconciled {len(user_ids)} user(s); {changed} index(es) repaired")
    finally:
        await close_backend()
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_reconcile(args))
    except Exception as exc:  # noqa: BLE001 - surface repair failures clearly
        print(f"reconcile_indexes failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
