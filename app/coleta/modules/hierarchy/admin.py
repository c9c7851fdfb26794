from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from app.coleta.constants import ALLOCATED_KINDS, CHILD_KIND, ENTITY_KINDS, KIND_SLUGS, LOCALIDADE, SECAO
from app.coleta.db import db_session
from app.coleta.modules.codes.consistency import run_consistency_check
from app.coleta.modules.codes.errors import DuplicateCodeError
from app.coleta.modules.codes.parser import decompose
from app.coleta.modules.codes.service import allocation_service_from_config
from app.coleta.modules.codes.validator import validate_in_store
from app.coleta.modules.hierarchy.service import (
    clean_text,
    create_localidade,
    create_secao,
    deactivate_entity,
    get_entity,
    list_entities,
    parse_int,
    serialize_entity,
    update_entity,
    validate_entity_payload,
)

bp = Blueprint("hierarchy", __name__)

# Body field naming the parent, per allocated kind.
PARENT_FIELD = {"rota": "secao_id", "ponto": "rota_id", "operador": "ponto_id"}


def _kind_from_slug(slug: str) -> str:
    kind = KIND_SLUGS.get(slug)
    if kind is None:
        abort(404)
    return kind


def _actor() -> str | None:
    return (request.headers.get("X-Actor") or "").strip() or None


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


# ---------- Codes ----------
@bp.get("/codes/validate")
def codes_validate():
    code = (request.args.get("code") or "").strip()
    kind = (request.args.get("kind") or "").strip().lower()
    if not code or kind not in ENTITY_KINDS:
        return jsonify({"errors": ["code and a valid kind are required."]}), 400
    outcome = validate_in_store(db_session(), kind, code)
    return jsonify(outcome.as_dict())


@bp.get("/codes/audit")
def codes_audit():
    report = run_consistency_check(db_session())
    return jsonify(report.as_dict())


@bp.get("/codes/<code>")
def codes_decompose(code: str):
    return jsonify(decompose(code).as_dict())


# ---------- List / detail ----------
@bp.get("/<slug>")
def entity_list(slug: str):
    kind = _kind_from_slug(slug)
    parent_id = request.args.get("parent_id", type=int)
    rows = list_entities(
        db_session(),
        kind,
        include_inactive=_truthy(request.args.get("include_inactive")),
        parent_id=parent_id if kind != LOCALIDADE else None,
    )
    return jsonify({"items": [serialize_entity(kind, r) for r in rows], "total": len(rows)})


@bp.get("/<slug>/<int:entity_id>")
def entity_detail(slug: str, entity_id: int):
    kind = _kind_from_slug(slug)
    entity = get_entity(db_session(), kind, entity_id)
    if not entity:
        abort(404)
    return jsonify(serialize_entity(kind, entity))


@bp.get("/<slug>/<int:entity_id>/next-code")
def entity_next_code(slug: str, entity_id: int):
    """Preview of the code the next child of this entity would get."""
    kind = _kind_from_slug(slug)
    child_kind = CHILD_KIND.get(kind)
    if child_kind not in ALLOCATED_KINDS:
        return jsonify({"errors": [f"Children of a {kind} are not allocated codes."]}), 400
    svc = allocation_service_from_config(current_app)
    code = svc.preview_code(child_kind, entity_id)
    return jsonify({"kind": child_kind, "parent_id": entity_id, "next_code": code, "exhausted": code is None})


# ---------- Create ----------
@bp.post("/<slug>")
def entity_create(slug: str):
    kind = _kind_from_slug(slug)
    payload = _payload()
    errors = validate_entity_payload(kind, payload)

    parent_id = None
    if kind in ALLOCATED_KINDS:
        try:
            parent_id = parse_int(payload.get(PARENT_FIELD[kind]))
        except ValueError:
            errors.append(f"{PARENT_FIELD[kind]} must be an integer.")
        else:
            if parent_id is None:
                errors.append(f"{PARENT_FIELD[kind]} is required.")
        if "code" in payload:
            errors.append(f"{kind.capitalize()} codes are allocated; do not send one.")
    if errors:
        return jsonify({"errors": errors}), 400

    if kind in ALLOCATED_KINDS:
        svc = allocation_service_from_config(current_app)
        entity = svc.create_coded_entity(kind, parent_id, payload, actor=_actor())
        return jsonify(serialize_entity(kind, entity)), 201

    s = db_session()
    try:
        if kind == LOCALIDADE:
            entity = create_localidade(s, payload, actor=_actor())
        elif kind == SECAO:
            entity = create_secao(s, payload, actor=_actor())
        else:  # pragma: no cover
            abort(404)
        s.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent create of the same code.
        s.rollback()
        raise DuplicateCodeError(f"Code {payload.get('code')!r} is already taken by another {kind}.", kind=kind) from e
    return jsonify(serialize_entity(kind, entity)), 201


# ---------- Update / deactivate ----------
@bp.patch("/<slug>/<int:entity_id>")
def entity_update(slug: str, entity_id: int):
    kind = _kind_from_slug(slug)
    s = db_session()
    entity = get_entity(s, kind, entity_id)
    if not entity:
        abort(404)

    payload = _payload()
    errors = validate_entity_payload(kind, payload, creating=False)
    if errors:
        return jsonify({"errors": errors}), 400

    reason = clean_text(payload.get("reason"))
    update_entity(s, kind, entity, payload, actor=_actor(), reason=reason)
    s.commit()
    return jsonify(serialize_entity(kind, entity))


@bp.post("/<slug>/<int:entity_id>/deactivate")
def entity_deactivate(slug: str, entity_id: int):
    kind = _kind_from_slug(slug)
    s = db_session()
    entity = get_entity(s, kind, entity_id)
    if not entity:
        abort(404)

    reason = clean_text(_payload().get("reason"))
    deactivate_entity(s, kind, entity, actor=_actor(), reason=reason)
    s.commit()
    current_app.logger.info("Deactivated %s id=%s code=%s", kind, entity.id, entity.code)
    return jsonify(serialize_entity(kind, entity))

