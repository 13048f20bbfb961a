"""Registrar controller proxy — on-chain queries and call encoding."""

from ensbundler.registrar.controller import RegistrarProxy

__all__ = ["RegistrarProxy"]
