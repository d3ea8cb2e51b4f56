"""rotaflow — motor de conversação por rotas, passos e lotes para agentes LLM."""

__version__ = "0.1.0"
