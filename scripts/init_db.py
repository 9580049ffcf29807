from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import func, inspect, select

from giveaway_engine.db.engine import get_sessionmaker, make_engine
from giveaway_engine.models import Giveaway, GiveawayEntry

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def report() -> None:
    """Print the tables of the configured database and row counts of the engine's tables."""
    engine = make_engine()
    tables = sorted(inspect(engine).get_table_names())
    print("Current tables:", ", ".join(tables))
    if "giveaways" not in tables:
        return
    Session = get_sessionmaker(engine)
    with Session() as session:
        giveaways = session.scalar(select(func.count()).select_from(Giveaway))
        entries = session.scalar(select(func.count()).select_from(GiveawayEntry))
    print(f"Giveaways: {giveaways}, entries: {entries}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate the giveaway database.")
    parser.add_argument("revision", nargs="?", default="head")
    args = parser.parse_args()
    upgrade_db(args.revision)
    report()


if __name__ == "__main__":
    main()
