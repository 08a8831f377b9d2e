"""
Provision an API key for a tenant.

Usage:
    memospace-create-api-key --owner alice --root legacy [--default legacy/notes]

The token is printed once; only its SHA-256 digest is stored.
"""

from __future__ import annotations

import argparse
import sys

import core.config as config
from core.auth import create_api_key
from core.db import DB, init_db
from core.errors import MemospaceError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a memospace API key")
    parser.add_argument("--owner", required=True, help="Owner id the key acts as")
    parser.add_argument("--root", required=True, help="Root namespace the key is confined to")
    parser.add_argument("--default", dest="default_namespace", help="Default namespace (defaults to root)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    init_db()
    db = DB.SessionLocal()
    try:
        token, record = create_api_key(
            db,
            owner_id=args.owner,
            root_namespace=args.root,
            default_namespace=args.default_namespace,
        )
    except MemospaceError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        db.close()

    config.logger.info(
        "api_key_created",
        extra={"owner_id": record.owner_id, "root_namespace": record.root_namespace},
    )
    print(f"owner:             {record.owner_id}")
    print(f"root namespace:    {record.root_namespace}")
    print(f"default namespace: {record.default_namespace}")
    print(f"token:             {token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
