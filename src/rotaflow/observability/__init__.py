"""Observabilidade: logging estruturado, contexto de turno e latência."""
