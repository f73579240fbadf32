from decimal import Decimal
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session

import models  # noqa: F401
from database import Base
from schemas import EntryIn
from services import IncomeLedgerService, ReportingService

ROOT = Path(__file__).resolve().parents[1]


def alembic_config(url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)
    cfg.attributes["configure_logger"] = False
    return cfg


def test_upgrade_builds_the_mapped_schema(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    command.upgrade(alembic_config(url), "head")

    engine = create_engine(url)
    inspector = inspect(engine)
    for table in Base.metadata.sorted_tables:
        assert inspector.has_table(table.name)
        migrated = {column["name"] for column in inspector.get_columns(table.name)}
        assert migrated == {column.name for column in table.columns}

    with Session(engine) as session:
        IncomeLedgerService(session, 1).add(EntryIn(user_id=1, amount=Decimal("12.5")))
        assert ReportingService(session, 1).reconcile(1)["in_sync"] is True
    engine.dispose()


def test_downgrade_removes_ledger_tables(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    cfg = alembic_config(url)
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = create_engine(url)
    remaining = set(inspect(engine).get_table_names())
    engine.dispose()
    assert remaining <= {"alembic_version"}
