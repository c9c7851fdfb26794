from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.coleta.models import Base


class CodedEntityMixin:
    """
    Columns shared by every level of the hierarchy.

    `code` is stored as issued; `code_key` is its uppercased form and carries the
    unique constraint, so uniqueness is case-insensitive at the database level too.
    Rows are never deleted: deactivation only flips `active`.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    code: Mapped[str] = mapped_column(String(16), nullable=False)
    code_key: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)

    nome: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(320), nullable=True)


class Localidade(CodedEntityMixin, Base):
    __tablename__ = "localidades"
    __table_args__ = (Index("idx_localidades_active", "active"),)

    secoes: Mapped[list["Secao"]] = relationship(back_populates="localidade", lazy="selectin")


class Secao(CodedEntityMixin, Base):
    __tablename__ = "secoes"
    __table_args__ = (
        Index("idx_secoes_localidade", "localidade_id"),
        Index("idx_secoes_active", "active"),
    )

    localidade_id: Mapped[int] = mapped_column(ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False)

    localidade: Mapped[Localidade] = relationship(back_populates="secoes", lazy="joined")


class Rota(CodedEntityMixin, Base):
    __tablename__ = "rotas"
    __table_args__ = (
        Index("idx_rotas_secao", "secao_id"),
        Index("idx_rotas_localidade", "localidade_id"),
        Index("idx_rotas_active", "active"),
    )

    secao_id: Mapped[int] = mapped_column(ForeignKey("secoes.id", ondelete="RESTRICT"), nullable=False)
    localidade_id: Mapped[int] = mapped_column(ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False)

    secao: Mapped[Secao] = relationship(lazy="joined")


class Ponto(CodedEntityMixin, Base):
    __tablename__ = "pontos"
    __table_args__ = (
        Index("idx_pontos_rota", "rota_id"),
        Index("idx_pontos_localidade", "localidade_id"),
        Index("idx_pontos_active", "active"),
    )

    rota_id: Mapped[int] = mapped_column(ForeignKey("rotas.id", ondelete="RESTRICT"), nullable=False)
    localidade_id: Mapped[int] = mapped_column(ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False)

    # Carried as-is; no rules attached.
    endereco: Mapped[str | None] = mapped_column(Text, nullable=True)
    telefone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    comissao: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)  # percent
    qtd_equipamentos: Mapped[int | None] = mapped_column(Integer, nullable=True)
    participa_despesa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rota: Mapped[Rota] = relationship(lazy="joined")


class Operador(CodedEntityMixin, Base):
    __tablename__ = "operadores"
    __table_args__ = (
        Index("idx_operadores_ponto", "ponto_id"),
        Index("idx_operadores_localidade", "localidade_id"),
        Index("idx_operadores_active", "active"),
    )

    ponto_id: Mapped[int] = mapped_column(ForeignKey("pontos.id", ondelete="RESTRICT"), nullable=False)
    localidade_id: Mapped[int] = mapped_column(ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False)

    fator_conversao: Mapped[float | None] = mapped_column(Float, nullable=True)

    ponto: Mapped[Ponto] = relationship(lazy="joined")


MODEL_FOR_KIND: dict[str, type[CodedEntityMixin]] = {
    "localidade": Localidade,
    "secao": Secao,
    "rota": Rota,
    "ponto": Ponto,
    "operador": Operador,
}

ENTITY_TYPE_NAME = {kind: model.__name__ for kind, model in MODEL_FOR_KIND.items()}
