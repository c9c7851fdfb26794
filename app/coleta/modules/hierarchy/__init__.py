"""
Operational hierarchy: Localidade -> Secao -> Rota -> Ponto -> Operador.

CRUD for the five levels plus a JSON API under /api. Code allocation lives in
the `codes` module; this module only carries the records and their inert fields.
"""
