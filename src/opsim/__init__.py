"""Deterministic host and ledger simulator for OP_NET-style contract bytecode."""

from __future__ import annotations

__version__ = "0.4.0"

__all__ = ["__version__"]
