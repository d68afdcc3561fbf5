"""Shared helpers."""

from __future__ import annotations

from .retry import retry, wait_for


__all__ = ["retry", "wait_for"]
