from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.coleta.audit import record_event
from app.coleta.constants import LOCALIDADE, OPERADOR, PONTO, ROTA, SECAO
from app.coleta.modules.codes.errors import ImmutableCodeError, ParentNotFoundError
from app.coleta.modules.codes.validator import ensure_unique, normalize_code
from app.coleta.modules.hierarchy.models import (
    ENTITY_TYPE_NAME,
    MODEL_FOR_KIND,
    Localidade,
    Operador,
    Ponto,
    Rota,
    Secao,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


_EXTERNAL_CODE_RE = re.compile(r"^[A-Za-z0-9]+$")

# Non-code fields an update may touch, per kind.
EDITABLE_FIELDS = {
    LOCALIDADE: ("nome",),
    SECAO: ("nome",),
    ROTA: ("nome",),
    PONTO: ("nome", "endereco", "telefone", "comissao", "qtd_equipamentos", "participa_despesa"),
    OPERADOR: ("nome", "fator_conversao"),
}


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_decimal(value: Any) -> Decimal | None:
    raw = clean_text(value)
    if raw is None:
        return None
    return Decimal(raw.replace(",", "."))


def parse_float(value: Any) -> float | None:
    raw = clean_text(value)
    if raw is None:
        return None
    return float(raw.replace(",", "."))


def parse_int(value: Any) -> int | None:
    raw = clean_text(value)
    if raw is None:
        return None
    return int(raw)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return (clean_text(value) or "").lower() in ("1", "true", "yes", "on", "sim")


def validate_external_code(code: Any) -> list[str]:
    """Localidade/Secao codes are typed in by an operator: two alphanumeric characters."""
    if code is not None and not isinstance(code, str):
        return ["Code must be a string."]
    raw = (code or "").strip()
    if not raw:
        return ["Code is required."]
    if len(raw) != 2 or not _EXTERNAL_CODE_RE.match(raw):
        return ["Code must be exactly 2 letters or digits."]
    return []


def validate_entity_payload(kind: str, payload: dict, *, creating: bool = True) -> list[str]:
    """Validate create/update payload for any level. Returns list of errors."""
    errors: list[str] = []
    raw_nome = payload.get("nome")
    if raw_nome is not None and not isinstance(raw_nome, str):
        errors.append("Nome must be a string.")
    else:
        nome = (raw_nome or "").strip()
        if creating and not nome:
            errors.append("Nome is required.")
        if not creating and "nome" in payload and not nome:
            errors.append("Nome cannot be blank.")

    if creating and kind in (LOCALIDADE, SECAO):
        errors.extend(validate_external_code(payload.get("code")))
    if creating and kind == SECAO:
        try:
            if parse_int(payload.get("localidade_id")) is None:
                errors.append("localidade_id is required.")
        except ValueError:
            errors.append("localidade_id must be an integer.")

    if kind == PONTO:
        try:
            comissao = parse_decimal(payload.get("comissao"))
            if comissao is not None and not (Decimal(0) <= comissao <= Decimal(100)):
                errors.append("Comissao must be between 0 and 100.")
        except InvalidOperation:
            errors.append("Comissao must be a number.")
        try:
            qtd = parse_int(payload.get("qtd_equipamentos"))
            if qtd is not None and qtd < 0:
                errors.append("Qtd equipamentos cannot be negative.")
        except ValueError:
            errors.append("Qtd equipamentos must be an integer.")
    if kind == OPERADOR:
        try:
            parse_float(payload.get("fator_conversao"))
        except ValueError:
            errors.append("Fator conversao must be a number.")
    return errors


def _apply_fields(kind: str, entity: Any, payload: dict) -> dict:
    """Copy editable fields from payload onto entity. Returns {field: {old, new}} for changed ones."""
    changes: dict = {}
    for field in EDITABLE_FIELDS[kind]:
        if field not in payload:
            continue
        raw = payload.get(field)
        if field == "comissao":
            new = parse_decimal(raw)
        elif field == "fator_conversao":
            new = parse_float(raw)
        elif field == "qtd_equipamentos":
            new = parse_int(raw)
        elif field == "participa_despesa":
            new = parse_bool(raw)
        else:
            new = clean_text(raw)
        old = getattr(entity, field)
        if new != old:
            changes[field] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(entity, field, new)
    return changes


def build_entity(kind: str, parent: Any, code: str, payload: dict, *, actor: str | None = None) -> Any:
    """Instantiate an allocated child row (not added to any session)."""
    now = datetime.utcnow()
    common = {
        "code": code,
        "code_key": normalize_code(code),
        "active": True,
        "created_at": now,
        "updated_at": now,
        "created_by": actor,
    }
    if kind == ROTA:
        entity: Any = Rota(secao_id=parent.id, localidade_id=parent.localidade_id, **common)
    elif kind == PONTO:
        entity = Ponto(rota_id=parent.id, localidade_id=parent.localidade_id, **common)
    elif kind == OPERADOR:
        entity = Operador(ponto_id=parent.id, localidade_id=parent.localidade_id, **common)
    else:
        raise ValueError(f"{kind!r} codes are not allocated from a parent.")
    entity.nome = clean_text(payload.get("nome")) or ""
    _apply_fields(kind, entity, {k: v for k, v in payload.items() if k != "nome"})
    return entity


def create_localidade(s: "Session", payload: dict, actor: str | None = None) -> Localidade:
    """Create a localidade with an externally assigned code."""
    code = clean_text(payload.get("code")) or ""
    ensure_unique(s, LOCALIDADE, code)

    now = datetime.utcnow()
    loc = Localidade(
        code=code,
        code_key=normalize_code(code),
        nome=clean_text(payload.get("nome")) or "",
        active=True,
        created_at=now,
        updated_at=now,
        created_by=actor,
    )
    s.add(loc)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="localidade.create",
        entity_type="Localidade",
        entity_id=str(loc.id),
        metadata={"code": loc.code, "nome": loc.nome},
    )
    return loc


def create_secao(s: "Session", payload: dict, actor: str | None = None) -> Secao:
    """Create a secao under an active localidade, with an externally assigned code."""
    localidade_id = parse_int(payload.get("localidade_id"))
    localidade = s.get(Localidade, localidade_id)
    if localidade is None or not localidade.active:
        raise ParentNotFoundError(
            f"Localidade {localidade_id} does not exist or is inactive.",
            kind=LOCALIDADE,
            parent_id=localidade_id,
        )
    code = clean_text(payload.get("code")) or ""
    ensure_unique(s, SECAO, code)

    now = datetime.utcnow()
    secao = Secao(
        code=code,
        code_key=normalize_code(code),
        nome=clean_text(payload.get("nome")) or "",
        localidade_id=localidade.id,
        active=True,
        created_at=now,
        updated_at=now,
        created_by=actor,
    )
    s.add(secao)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="secao.create",
        entity_type="Secao",
        entity_id=str(secao.id),
        metadata={"code": secao.code, "nome": secao.nome, "localidade_id": localidade.id},
    )
    return secao


def update_entity(s: "Session", kind: str, entity: Any, payload: dict, actor: str | None = None, reason: str | None = None) -> Any:
    """Update non-code fields. Codes never change after creation."""
    if "code" in payload and normalize_code(payload.get("code")) != entity.code_key:
        raise ImmutableCodeError(
            f"Code of {kind} {entity.id} is immutable ({entity.code!r}).",
            code=entity.code,
            kind=kind,
        )
    changes = _apply_fields(kind, entity, payload)
    if changes:
        entity.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=actor,
        action=f"{kind}.edit",
        entity_type=ENTITY_TYPE_NAME[kind],
        entity_id=str(entity.id),
        reason=reason,
        metadata={"code": entity.code, "changes": changes},
    )
    return entity


def deactivate_entity(s: "Session", kind: str, entity: Any, actor: str | None = None, reason: str | None = None) -> Any:
    """Soft-delete: flag inactive. The code stays in the uniqueness set for good."""
    if not entity.active:
        return entity
    entity.active = False
    entity.deactivated_at = datetime.utcnow()
    entity.updated_at = entity.deactivated_at

    record_event(
        s,
        actor=actor,
        action=f"{kind}.deactivate",
        entity_type=ENTITY_TYPE_NAME[kind],
        entity_id=str(entity.id),
        reason=reason,
        metadata={"code": entity.code},
    )
    return entity


def get_entity(s: "Session", kind: str, entity_id: int) -> Any | None:
    return s.get(MODEL_FOR_KIND[kind], entity_id)


def get_by_code(s: "Session", kind: str, code: str) -> Any | None:
    model = MODEL_FOR_KIND[kind]
    return s.execute(select(model).where(model.code_key == normalize_code(code))).scalar_one_or_none()


def list_entities(s: "Session", kind: str, *, include_inactive: bool = False, parent_id: int | None = None) -> list[Any]:
    """Rows of a kind ordered by code, then name."""
    model = MODEL_FOR_KIND[kind]
    q = select(model)
    if not include_inactive:
        q = q.where(model.active.is_(True))
    if parent_id is not None:
        parent_col = {SECAO: "localidade_id", ROTA: "secao_id", PONTO: "rota_id", OPERADOR: "ponto_id"}.get(kind)
        if parent_col is None:
            raise ValueError(f"{kind!r} has no parent.")
        q = q.where(getattr(model, parent_col) == parent_id)
    return list(s.execute(q.order_by(model.code_key.asc(), model.nome.asc())).scalars().all())


def serialize_entity(kind: str, entity: Any) -> dict:
    out: dict = {
        "id": entity.id,
        "kind": kind,
        "code": entity.code,
        "nome": entity.nome,
        "active": entity.active,
        "created_at": entity.created_at.isoformat() if entity.created_at else None,
        "updated_at": entity.updated_at.isoformat() if entity.updated_at else None,
        "deactivated_at": entity.deactivated_at.isoformat() if entity.deactivated_at else None,
    }
    if kind == SECAO:
        out["localidade_id"] = entity.localidade_id
    elif kind == ROTA:
        out.update({"secao_id": entity.secao_id, "localidade_id": entity.localidade_id})
    elif kind == PONTO:
        out.update(
            {
                "rota_id": entity.rota_id,
                "localidade_id": entity.localidade_id,
                "endereco": entity.endereco,
                "telefone": entity.telefone,
                "comissao": str(entity.comissao) if entity.comissao is not None else None,
                "qtd_equipamentos": entity.qtd_equipamentos,
                "participa_despesa": entity.participa_despesa,
            }
        )
    elif kind == OPERADOR:
        out.update(
            {
                "ponto_id": entity.ponto_id,
                "localidade_id": entity.localidade_id,
                "fator_conversao": entity.fator_conversao,
            }
        )
    return out
