import argparse
import os
import sys
from importlib.util import find_spec
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply forward-only PostgreSQL migrations for governance and multisig stores."
    )
    parser.add_argument(
        "--target",
        choices=["governance", "multisig", "all"],
        default="all",
        help="Migration target namespace.",
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("GOVERNANCE_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN shared by the governance and multisig stores.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migration versions without applying them.",
    )
    args = parser.parse_args(argv)

    if not args.dsn:
        raise RuntimeError("POSTGRES_MIGRATION_DSN_REQUIRED")
    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    from src.infrastructure.postgres_migrations import (
        apply_postgres_migrations,
        list_pending_migrations,
    )

    with psycopg.connect(args.dsn, row_factory=dict_row) as connection:
        for namespace in _resolve_targets(args.target):
            if args.dry_run:
                pending = list_pending_migrations(connection=connection, namespace=namespace)
                print(f"Pending migrations for namespace={namespace}: {pending or 'none'}")
                continue
            applied = apply_postgres_migrations(connection=connection, namespace=namespace)
            print(f"Applied migrations for namespace={namespace}: {applied or 'none'}")
    return 0


def _resolve_targets(target: str) -> list[str]:
    if target == "all":
        return ["governance", "multisig"]
    return [target]


if __name__ == "__main__":
    raise SystemExit(main())
