"""Constantes do motor."""

from __future__ import annotations

END_ROUTE_ID: str = "END_ROUTE"

# Faixas de score apresentadas ao modelo no roteamento (regra fixa)
SCORE_BANDS: tuple[tuple[int, int, str], ...] = (
    (90, 100, "Strong explicit match: the user directly asks for this flow"),
    (70, 89, "Contextual match plus matching keywords"),
    (50, 69, "Moderate relevance"),
    (30, 49, "Weak or ambiguous relevance"),
    (0, 29, "No relevance"),
)

ROUTE_COMPLETED_DESCRIPTION: str = "Route completed"
