"""Tests for the hierarchy JSON API (create, allocate, edit, deactivate, code lookups)."""
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.coleta import create_app
from app.coleta.db import session_scope
from app.coleta.models import AuditEvent, Base


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ALLOCATION_RETRY_BACKOFF_MS", "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _create(client, slug, payload, **headers):
    return client.post(f"/api/{slug}", json=payload, headers=headers)


def _seed_secao(client):
    loc = _create(client, "localidades", {"code": "03", "nome": "Centro"})
    assert loc.status_code == 201
    sec = _create(client, "secoes", {"code": "01", "nome": "Norte", "localidade_id": loc.json["id"]})
    assert sec.status_code == 201
    return loc.json, sec.json


def test_full_chain_allocation(client):
    _loc, sec = _seed_secao(client)

    r1 = _create(client, "rotas", {"nome": "Rota A", "secao_id": sec["id"]})
    r2 = _create(client, "rotas", {"nome": "Rota B", "secao_id": sec["id"]})
    assert r1.status_code == 201
    assert (r1.json["code"], r2.json["code"]) == ("030101", "030102")

    p = _create(client, "pontos", {"nome": "Bar", "rota_id": r1.json["id"], "comissao": "12,5", "qtd_equipamentos": "3"})
    assert p.status_code == 201
    assert p.json["code"] == "03010101"
    assert Decimal(p.json["comissao"]) == Decimal("12.5")
    assert p.json["qtd_equipamentos"] == 3

    o = _create(client, "operadores", {"nome": "Máquina", "ponto_id": p.json["id"], "fator_conversao": "0.5"})
    assert o.status_code == 201
    assert o.json["code"] == "0301010101"
    assert o.json["localidade_id"] == sec["localidade_id"]


def test_form_posts_are_accepted(client):
    r = client.post("/api/localidades", data={"code": "AB", "nome": "Form"})
    assert r.status_code == 201
    assert r.json["code"] == "AB"


def test_validation_errors(client):
    _loc, sec = _seed_secao(client)

    r = _create(client, "localidades", {"code": "ABC", "nome": "X"})
    assert r.status_code == 400
    assert r.json["errors"]

    r = _create(client, "rotas", {"nome": "", "secao_id": sec["id"]})
    assert r.status_code == 400

    r = _create(client, "rotas", {"nome": "Rota", "secao_id": sec["id"], "code": "030150"})
    assert r.status_code == 400
    assert any("allocated" in e for e in r.json["errors"])

    r = _create(client, "rotas", {"nome": "Rota"})
    assert r.status_code == 400

    r = _create(client, "secoes", {"code": "02", "nome": "Sul", "localidade_id": "x"})
    assert r.status_code == 400


def test_duplicate_external_code_is_409_case_insensitive(client):
    _create(client, "localidades", {"code": "ab", "nome": "Primeira"})
    r = _create(client, "localidades", {"code": "AB", "nome": "Segunda"})
    assert r.status_code == 409
    assert r.json["error"] == "DuplicateCode"


def test_missing_parent_is_404(client):
    r = _create(client, "rotas", {"nome": "Orfã", "secao_id": 999})
    assert r.status_code == 404
    assert r.json["error"] == "ParentNotFound"

    r = _create(client, "secoes", {"code": "01", "nome": "Orfã", "localidade_id": 999})
    assert r.status_code == 404


def test_code_is_immutable_on_update(client):
    _loc, sec = _seed_secao(client)
    rota = _create(client, "rotas", {"nome": "Rota A", "secao_id": sec["id"]}).json

    r = client.patch(f"/api/rotas/{rota['id']}", json={"code": "030199"})
    assert r.status_code == 422
    assert r.json["error"] == "ImmutableCode"

    r = client.patch(f"/api/rotas/{rota['id']}", json={"code": "030101", "nome": "Rota Renomeada"})
    assert r.status_code == 200
    assert r.json["nome"] == "Rota Renomeada"
    assert r.json["code"] == "030101"


def test_update_validates_fields(client):
    _loc, sec = _seed_secao(client)
    rota = _create(client, "rotas", {"nome": "Rota A", "secao_id": sec["id"]}).json
    ponto = _create(client, "pontos", {"nome": "Bar", "rota_id": rota["id"]}).json

    r = client.patch(f"/api/pontos/{ponto['id']}", json={"comissao": "150"})
    assert r.status_code == 400

    r = client.patch(f"/api/pontos/{ponto['id']}", json={"participa_despesa": "sim", "telefone": " 555-0101 "})
    assert r.status_code == 200
    assert r.json["participa_despesa"] is True
    assert r.json["telefone"] == "555-0101"


def test_deactivate_hides_from_list_but_keeps_code(client):
    _loc, sec = _seed_secao(client)
    rota = _create(client, "rotas", {"nome": "Rota A", "secao_id": sec["id"]}).json

    r = client.post(f"/api/rotas/{rota['id']}/deactivate", json={"reason": "encerrada"})
    assert r.status_code == 200
    assert r.json["active"] is False
    assert r.json["deactivated_at"]

    assert client.get("/api/rotas").json["total"] == 0
    assert client.get("/api/rotas?include_inactive=1").json["total"] == 1

    r = client.get("/api/codes/validate", query_string={"code": "030101", "kind": "rota"})
    assert r.json == {"code": "030101", "valid": False, "reason": "DuplicateCode"}

    nxt = _create(client, "rotas", {"nome": "Rota B", "secao_id": sec["id"]})
    assert nxt.json["code"] == "030102"

    # Children cannot be allocated under an inactive parent.
    r = _create(client, "pontos", {"nome": "Bar", "rota_id": rota["id"]})
    assert r.status_code == 404


def test_list_filters_by_parent_and_orders_by_code(client):
    loc, sec = _seed_secao(client)
    other = _create(client, "secoes", {"code": "02", "nome": "Sul", "localidade_id": loc["id"]}).json
    _create(client, "rotas", {"nome": "B", "secao_id": other["id"]})
    _create(client, "rotas", {"nome": "A", "secao_id": sec["id"]})
    _create(client, "rotas", {"nome": "C", "secao_id": sec["id"]})

    r = client.get(f"/api/rotas?parent_id={sec['id']}")
    assert [i["code"] for i in r.json["items"]] == ["030101", "030102"]

    r = client.get("/api/rotas")
    assert [i["code"] for i in r.json["items"]] == ["030101", "030102", "030201"]


def test_detail_and_404(client):
    _loc, sec = _seed_secao(client)
    r = client.get(f"/api/secoes/{sec['id']}")
    assert r.status_code == 200
    assert r.json["code"] == "01"

    r = client.get("/api/secoes/999")
    assert r.status_code == 404


def test_next_code_preview(client):
    loc, sec = _seed_secao(client)
    r = client.get(f"/api/secoes/{sec['id']}/next-code")
    assert r.json == {"kind": "rota", "parent_id": sec["id"], "next_code": "030101", "exhausted": False}

    _create(client, "rotas", {"nome": "A", "secao_id": sec["id"]})
    assert client.get(f"/api/secoes/{sec['id']}/next-code").json["next_code"] == "030102"

    r = client.get(f"/api/localidades/{loc['id']}/next-code")
    assert r.status_code == 400

    r = client.get("/api/secoes/999/next-code")
    assert r.status_code == 404


def test_decompose_endpoint(client):
    r = client.get("/api/codes/0301020704")
    assert r.status_code == 200
    assert r.json["kind"] == "operador"
    assert r.json["rota"] == "02"
    assert r.json["parent_code"] == "03010207"

    r = client.get("/api/codes/03010")
    assert r.status_code == 422
    assert r.json["error"] == "MalformedCode"


def test_validate_endpoint_requires_params(client):
    assert client.get("/api/codes/validate").status_code == 400
    assert client.get("/api/codes/validate?code=0301&kind=nope").status_code == 400

    r = client.get("/api/codes/validate?code=030101&kind=rota")
    assert r.json["valid"] is True


def test_audit_endpoint_clean(client):
    _loc, sec = _seed_secao(client)
    _create(client, "rotas", {"nome": "A", "secao_id": sec["id"]})
    r = client.get("/api/codes/audit")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["scanned"]["rota"] == 1


def test_actor_and_request_id_are_audited(app, client):
    _loc, sec = _seed_secao(client)
    rota = _create(client, "rotas", {"nome": "A", "secao_id": sec["id"]}).json
    client.post(
        f"/api/rotas/{rota['id']}/deactivate",
        json={"reason": "fechada"},
        headers={"X-Actor": "ana@example.com", "X-Request-ID": "req-42"},
    )

    with session_scope(app) as s:
        ev = s.execute(select(AuditEvent).where(AuditEvent.action == "rota.deactivate")).scalar_one()
        assert ev.actor == "ana@example.com"
        assert ev.request_id == "req-42"
        assert ev.reason == "fechada"
        assert ev.entity_type == "Rota"

        actions = set(s.execute(select(AuditEvent.action)).scalars().all())
        assert {"localidade.create", "secao.create", "rota.create", "rota.deactivate"} <= actions


@pytest.mark.parametrize(
    "payload",
    [
        {"code": 3, "nome": "Centro"},
        {"code": "03", "nome": 5},
        {"code": ["03"], "nome": "Centro"},
        {"code": "03", "nome": {"pt": "Centro"}},
    ],
)
def test_non_string_fields_are_rejected(client, payload):
    r = _create(client, "localidades", payload)
    assert r.status_code == 400
    assert r.json["errors"]


def test_non_string_nome_on_allocated_and_update(client):
    _loc, sec = _seed_secao(client)
    r = _create(client, "rotas", {"nome": 7, "secao_id": sec["id"]})
    assert r.status_code == 400
    assert "Nome must be a string." in r.json["errors"]

    r = client.patch(f"/api/secoes/{sec['id']}", json={"nome": 7})
    assert r.status_code == 400

    r = client.patch(f"/api/secoes/{sec['id']}", json={"code": 1})
    assert r.status_code == 422
    assert r.json["error"] == "ImmutableCode"


@pytest.mark.parametrize("parent", [True, False, 1.5, "x", [1], {"id": 1}])
def test_parent_id_must_be_an_integer(client, parent):
    _seed_secao(client)
    r = _create(client, "rotas", {"nome": "Rota", "secao_id": parent})
    assert r.status_code == 400
    assert "secao_id must be an integer." in r.json["errors"]
    assert client.get("/api/rotas").json["total"] == 0


def test_parent_id_as_numeric_string(client):
    _loc, sec = _seed_secao(client)
    r = _create(client, "rotas", {"nome": "Rota", "secao_id": str(sec["id"])})
    assert r.status_code == 201
    assert r.json["code"] == "030101"
