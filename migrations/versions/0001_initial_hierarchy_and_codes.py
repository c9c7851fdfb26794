"""initial hierarchy, code sequences and audit tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _coded_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("code_key", sa.String(16), nullable=False, unique=True),
        sa.Column("nome", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.String(320), nullable=True),
    ]


def upgrade() -> None:
    """Create audit_events, code_sequences and the five hierarchy tables."""
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor", sa.String(320), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    if "code_sequences" not in existing_tables:
        op.create_table(
            "code_sequences",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("entity_kind", sa.String(32), nullable=False),
            sa.Column("scope_key", sa.String(16), nullable=False),
            sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("entity_kind", "scope_key", name="uq_code_sequences_kind_scope"),
        )

    if "localidades" not in existing_tables:
        op.create_table("localidades", *_coded_columns())
        op.create_index("idx_localidades_active", "localidades", ["active"])

    if "secoes" not in existing_tables:
        op.create_table(
            "secoes",
            *_coded_columns(),
            sa.Column("localidade_id", sa.Integer(), sa.ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False),
        )
        op.create_index("idx_secoes_localidade", "secoes", ["localidade_id"])
        op.create_index("idx_secoes_active", "secoes", ["active"])

    if "rotas" not in existing_tables:
        op.create_table(
            "rotas",
            *_coded_columns(),
            sa.Column("secao_id", sa.Integer(), sa.ForeignKey("secoes.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("localidade_id", sa.Integer(), sa.ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False),
        )
        op.create_index("idx_rotas_secao", "rotas", ["secao_id"])
        op.create_index("idx_rotas_localidade", "rotas", ["localidade_id"])
        op.create_index("idx_rotas_active", "rotas", ["active"])

    if "pontos" not in existing_tables:
        op.create_table(
            "pontos",
            *_coded_columns(),
            sa.Column("rota_id", sa.Integer(), sa.ForeignKey("rotas.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("localidade_id", sa.Integer(), sa.ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("endereco", sa.Text(), nullable=True),
            sa.Column("telefone", sa.String(64), nullable=True),
            sa.Column("comissao", sa.Numeric(5, 2), nullable=True),
            sa.Column("qtd_equipamentos", sa.Integer(), nullable=True),
            sa.Column("participa_despesa", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        )
        op.create_index("idx_pontos_rota", "pontos", ["rota_id"])
        op.create_index("idx_pontos_localidade", "pontos", ["localidade_id"])
        op.create_index("idx_pontos_active", "pontos", ["active"])

    if "operadores" not in existing_tables:
        op.create_table(
            "operadores",
            *_coded_columns(),
            sa.Column("ponto_id", sa.Integer(), sa.ForeignKey("pontos.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("localidade_id", sa.Integer(), sa.ForeignKey("localidades.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("fator_conversao", sa.Float(), nullable=True),
        )
        op.create_index("idx_operadores_ponto", "operadores", ["ponto_id"])
        op.create_index("idx_operadores_localidade", "operadores", ["localidade_id"])
        op.create_index("idx_operadores_active", "operadores", ["active"])


def downgrade() -> None:
    """Drop tables in reverse order."""
    op.drop_table("operadores")
    op.drop_table("pontos")
    op.drop_table("rotas")
    op.drop_table("secoes")
    op.drop_table("localidades")
    op.drop_table("code_sequences")
    op.drop_table("audit_events")
