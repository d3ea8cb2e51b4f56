"""Motor: roteamento, lotes de passos, tools e hooks."""
