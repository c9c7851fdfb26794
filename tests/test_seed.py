"""Tests for the init_db seeding script."""
import sys
from pathlib import Path

import pytest
from sqlalchemy import select

SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"
if str(SCRIPTS) not in sys.path:
    sys.path.insert(0, str(SCRIPTS))

import audit_codes  # noqa: E402
import init_db  # noqa: E402

from app.coleta.db import session_scope  # noqa: E402
from app.coleta.modules.hierarchy.models import Localidade, Secao  # noqa: E402

SEED = {
    "localidades": [{"code": "03", "nome": "Centro"}, {"code": "04", "nome": "Leste"}],
    "secoes": [{"localidade": "03", "code": "01", "nome": "Norte"}],
}


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    init_db.create_tables(url)
    return url


def test_seed_is_idempotent(db_url):
    assert init_db.seed_only(SEED, database_url=db_url) == (2, 1)
    assert init_db.seed_only(SEED, database_url=db_url) == (0, 0)

    from app.coleta import create_app

    app = create_app()
    with session_scope(app) as s:
        assert sorted(s.execute(select(Localidade.code)).scalars().all()) == ["03", "04"]
        secao = s.execute(select(Secao)).scalar_one()
        assert secao.localidade.code == "03"


def test_seed_rejects_unknown_localidade(db_url):
    with pytest.raises(ValueError):
        init_db.seed_only({"secoes": [{"localidade": "99", "code": "01", "nome": "X"}]}, database_url=db_url)


def test_seed_rejects_bad_code(db_url):
    with pytest.raises(ValueError):
        init_db.seed_only({"localidades": [{"code": "003", "nome": "X"}]}, database_url=db_url)


def test_audit_script_exit_status(db_url, monkeypatch, capsys):
    init_db.seed_only(SEED, database_url=db_url)
    monkeypatch.setattr(sys, "argv", ["audit_codes.py", "--database-url", db_url])
    assert audit_codes.main() == 0
    assert "No findings." in capsys.readouterr().out
