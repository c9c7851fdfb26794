from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.coleta.models import Base


class CodeSequence(Base):
    """
    Per-parent-scope sequence counter.

    One row per (child kind, parent scope). `last_value` is the highest sequence ever
    handed out under the scope; it only moves forward, so deactivated children never
    free their number. Rows are keyed by the parent's code, which is immutable.
    """

    __tablename__ = "code_sequences"
    __table_args__ = (
        UniqueConstraint("entity_kind", "scope_key", name="uq_code_sequences_kind_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_kind: Mapped[str] = mapped_column(String(32), nullable=False)  # rota, ponto, operador
    scope_key: Mapped[str] = mapped_column(String(16), nullable=False)  # uppercased parent prefix
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
