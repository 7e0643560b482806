from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlmodel import select

from guestpilot.core.config import AppSettings
from guestpilot.core.db.models import Tenant
from guestpilot.core.db.session import (
    create_engine_from_settings,
    engine_options,
    init_db,
    session_scope,
)

pytestmark = pytest.mark.unit


def test_engine_options_per_backend() -> None:
    assert engine_options("sqlite:///./guestpilot.db") == {
        "connect_args": {"check_same_thread": False}
    }
    assert engine_options("postgresql+psycopg://u:p@db:5432/guestpilot") == {
        "pool_pre_ping": True
    }


def test_session_scope_commits_and_rolls_back(tmp_path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("POSTGRES_DSN_OVERRIDE", f"sqlite:///{tmp_path / 'scope.db'}")
    settings = AppSettings.load()
    engine = create_engine_from_settings(settings)
    init_db(engine)

    assert create_engine_from_settings(settings) is engine
    assert "conversation_logs" in inspect(engine).get_table_names()

    with session_scope(settings) as session:
        session.add(Tenant(name="Committed", hostaway_account_id="acct-ok"))

    with pytest.raises(RuntimeError):
        with session_scope(settings) as session:
            session.add(Tenant(name="Rolled back", hostaway_account_id="acct-no"))
            session.flush()
            raise RuntimeError("boom")

    with session_scope(settings) as session:
        names = [tenant.name for tenant in session.exec(select(Tenant)).all()]
    assert names == ["Committed"]
