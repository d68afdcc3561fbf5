"""Shell-style ``${VAR:-default}`` template substitution.

Substitution is a single pass: substituted values are never re-expanded.
A placeholder without a value and without a default is left untouched, and
render() then refuses the output so broken media is never written.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping, Optional

from ubuntu_usb_creator.exceptions import UnresolvedPlaceholderError


PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")
LEFTOVER_PATTERN = re.compile(r"\$\{[^}]*\}?")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


def load_template(name: str, template_dir: Optional[Path] = None) -> str:
    path = Path(template_dir or TEMPLATE_DIR) / name
    return path.read_text(encoding="utf-8")


def substitute(template: str, values: Mapping[str, object]) -> str:
    """Replace each placeholder with its value, or its default when the
    value is missing or empty (shell ``:-`` semantics)."""

    def replace(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        value = values.get(name)
        if value is not None and str(value) != "":
            return str(value)
        if default is not None:
            return default
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def find_placeholders(text: str) -> list[str]:
    """Every ``${...}`` token left in text, including malformed ones."""
    return LEFTOVER_PATTERN.findall(text)


def render(template: str, values: Mapping[str, object]) -> str:
    """Substitute and then require that no placeholder remains.

    Raises:
        UnresolvedPlaceholderError: If any ``${...}`` token survives
    """
    output = substitute(template, values)
    leftovers = find_placeholders(output)
    if leftovers:
        raise UnresolvedPlaceholderError(leftovers)
    return output
