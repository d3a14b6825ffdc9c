#!/usr/bin/env python
"""Run Alembic against the family meals database.

    python scripts/apply_migrations.py                 # upgrade to head
    python scripts/apply_migrations.py downgrade -1
    python scripts/apply_migrations.py revision "add meal ratings"
"""
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def alembic_args(argv):
    if not argv:
        return ["upgrade", "head"]
    command, rest = argv[0], argv[1:]
    if command == "revision":
        if not rest:
            raise SystemExit('Usage: python scripts/apply_migrations.py revision "message"')
        return ["revision", "--autogenerate", "-m", rest[0]]
    if command in ("upgrade", "downgrade"):
        return [command, rest[0] if rest else ("head" if command == "upgrade" else "-1")]
    raise SystemExit(f"Unknown command: {command}")


def main():
    logging.basicConfig(level=logging.INFO)
    repo_root = Path(__file__).resolve().parents[1]
    env_path = repo_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    # host-run migrations may point at a different URL than the service
    migrations_url = os.getenv("MIGRATIONS_DATABASE_URL")
    if migrations_url:
        os.environ["DATABASE_URL"] = migrations_url

    cmd = ["poetry", "run", "alembic", *alembic_args(sys.argv[1:])]
    logger.info("Running %s", " ".join(cmd))
    result = subprocess.run(cmd, cwd=repo_root)
    sys.exit(result.returncode)


if __name__ == "__main__":
    main()
