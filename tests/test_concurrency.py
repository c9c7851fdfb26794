"""Concurrent allocation under one parent must never hand out the same code twice."""
import threading

import pytest
from sqlalchemy import select

from app.coleta import create_app
from app.coleta.db import session_scope
from app.coleta.models import Base
from app.coleta.modules.codes.models import CodeSequence
from app.coleta.modules.codes.service import allocation_service_from_config
from app.coleta.modules.hierarchy.models import Rota
from app.coleta.modules.hierarchy.service import create_localidade, create_secao


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


def _seed(app):
    with session_scope(app) as s:
        loc = create_localidade(s, {"code": "03", "nome": "Centro"})
        a = create_secao(s, {"code": "01", "nome": "Norte", "localidade_id": loc.id})
        b = create_secao(s, {"code": "02", "nome": "Sul", "localidade_id": loc.id})
        return a.id, b.id


def _run_concurrently(svc, jobs):
    """Start every job at the same instant; collect codes and errors."""
    barrier = threading.Barrier(len(jobs))
    codes: list[str] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def _worker(kind, parent_id, nome):
        barrier.wait()
        try:
            entity = svc.create_coded_entity(kind, parent_id, {"nome": nome})
        except Exception as e:  # collected and asserted on below
            with lock:
                errors.append(e)
            return
        with lock:
            codes.append(entity.code)

    threads = [threading.Thread(target=_worker, args=job) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=120)
    return codes, errors


def test_parallel_rotas_under_one_secao_get_distinct_codes(app):
    secao_id, _ = _seed(app)
    svc = allocation_service_from_config(app)

    codes, errors = _run_concurrently(svc, [("rota", secao_id, f"Rota {i}") for i in range(24)])

    assert errors == []
    assert sorted(codes) == [f"0301{n:02d}" for n in range(1, 25)]
    with session_scope(app) as s:
        stored = s.execute(select(Rota.code)).scalars().all()
        counter = s.execute(select(CodeSequence).where(CodeSequence.scope_key == "0301")).scalar_one()
        assert sorted(stored) == sorted(codes)
        assert counter.last_value == 24


def test_parallel_allocation_after_counter_exists(app):
    secao_id, _ = _seed(app)
    svc = allocation_service_from_config(app)
    assert svc.create_coded_entity("rota", secao_id, {"nome": "Primeira"}).code == "030101"

    codes, errors = _run_concurrently(svc, [("rota", secao_id, f"Rota {i}") for i in range(20)])

    assert errors == []
    assert sorted(codes) == [f"0301{n:02d}" for n in range(2, 22)]


def test_parallel_allocation_across_scopes(app):
    secao_a, secao_b = _seed(app)
    svc = allocation_service_from_config(app)

    jobs = [("rota", secao_a, f"A{i}") for i in range(12)] + [("rota", secao_b, f"B{i}") for i in range(12)]
    codes, errors = _run_concurrently(svc, jobs)

    assert errors == []
    assert sorted(c for c in codes if c.startswith("0301")) == [f"0301{n:02d}" for n in range(1, 13)]
    assert sorted(c for c in codes if c.startswith("0302")) == [f"0302{n:02d}" for n in range(1, 13)]
