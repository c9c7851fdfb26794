"""
Central constants for the code hierarchy.

Localidade -> Secao -> Rota -> Ponto -> Operador. Every segment is two
characters wide; child codes are the parent's full code plus a zero-padded
two-digit sequence.
"""
from __future__ import annotations

SEGMENT_WIDTH = 2

SEQUENCE_MIN = 1
SEQUENCE_MAX = 99

LOCALIDADE = "localidade"
SECAO = "secao"
ROTA = "rota"
PONTO = "ponto"
OPERADOR = "operador"

ENTITY_KINDS = (LOCALIDADE, SECAO, ROTA, PONTO, OPERADOR)

# Kinds whose codes are allocated from a parent scope (vs. typed in by an operator).
ALLOCATED_KINDS = (ROTA, PONTO, OPERADOR)

PARENT_KIND = {
    SECAO: LOCALIDADE,
    ROTA: SECAO,
    PONTO: ROTA,
    OPERADOR: PONTO,
}

CHILD_KIND = {parent: child for child, parent in PARENT_KIND.items()}

CODE_LENGTH = {
    LOCALIDADE: 2,
    SECAO: 2,
    ROTA: 6,
    PONTO: 8,
    OPERADOR: 10,
}

# Length of the parent scope prefix for allocated kinds. A Rota's scope is
# LocalidadeCode + SecaoCode (4 chars), not the Secao code alone.
SCOPE_LENGTH = {
    ROTA: 4,
    PONTO: 6,
    OPERADOR: 8,
}

# URL slugs used by the JSON API.
KIND_SLUGS = {
    "localidades": LOCALIDADE,
    "secoes": SECAO,
    "rotas": ROTA,
    "pontos": PONTO,
    "operadores": OPERADOR,
}

SLUG_FOR_KIND = {kind: slug for slug, kind in KIND_SLUGS.items()}
