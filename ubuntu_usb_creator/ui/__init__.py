"""Terminal user interface."""

from __future__ import annotations

from .prompts import Prompter


__all__ = ["Prompter"]
