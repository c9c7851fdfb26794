"""
Hierarchical code allocation and validation.

Codes (2-char segments, left to right):
- Localidade: LL            (typed in)
- Secao:      SS            (typed in)
- Rota:       LL SS NN      (allocated under Localidade+Secao)
- Ponto:      <rota> NN     (allocated under a Rota)
- Operador:   <ponto> NN    (allocated under a Ponto)

Hard constraints:
- Codes are unique per kind, compared case-insensitively, inactive rows included
- A code is issued once, inside the allocation transaction, and never changes
- Sequence numbers per parent scope only go up (1-99) and are never reused
"""
