"""Cyncro assistant service: provider-agnostic, tool-calling chat over SSE."""

__version__ = "0.1.0"
