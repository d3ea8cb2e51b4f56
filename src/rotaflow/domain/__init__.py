"""Domínio: tipos de valor, enums e contratos (sem I/O)."""
