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
        description="Apply forward-only PostgreSQL migrations for the supply request store."
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("REQUEST_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN of the request store. Defaults to REQUEST_POSTGRES_DSN.",
    )
    parser.add_argument(
        "--namespace",
        default="requests",
        help="Migration namespace under src/infrastructure/postgres_migrations.",
    )
    args = parser.parse_args(argv)

    if not args.dsn:
        raise RuntimeError(f"POSTGRES_MIGRATION_DSN_REQUIRED:{args.namespace}")
    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    from src.infrastructure.postgres_migrations import apply_postgres_migrations

    with psycopg.connect(args.dsn, row_factory=dict_row) as connection:
        applied = apply_postgres_migrations(connection=connection, namespace=args.namespace)
    print(f"Applied migrations for namespace={args.namespace}: {applied or 'none pending'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
