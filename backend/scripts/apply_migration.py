"""Apply SQL migrations from backend/migrations.

Usage:
    python scripts/apply_migration.py                 # every file, in name order
    python scripts/apply_migration.py 0001_community_moderation.sql
"""

import asyncio
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent.parent
MIGRATIONS_DIR = BACKEND_DIR / "migrations"

# Ensure backend path is in sys.path
sys.path.append(str(BACKEND_DIR))

from velonx.infra.postgres import close_pool, get_pool  # noqa: E402


def _migration_files(names: list[str]) -> list[Path]:
    if names:
        return [MIGRATIONS_DIR / name for name in names]
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


async def apply_migrations(names: list[str]) -> int:
    files = _migration_files(names)
    missing = [path for path in files if not path.exists()]
    if missing:
        for path in missing:
            print(f"Migration file not found: {path}")
        return 1

    pool = await get_pool()
    try:
        for path in files:
            print(f"Applying migration: {path.name}")
            sql = path.read_text(encoding="utf-8")
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(sql)
        print("Migrations applied successfully.")
    finally:
        await close_pool()
    return 0


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    os.chdir(BACKEND_DIR)
    sys.exit(asyncio.run(apply_migrations(sys.argv[1:])))
