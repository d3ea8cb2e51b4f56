"""Grafo de conversa: rotas, passos, tools, condições e domínios."""
