"""Substitute resolved secrets into an overlay's example manifest.

Rendering is textual so the output matches the template byte for byte apart
from the substituted values. A slot token only matches a whole line (after
indentation or a list dash), which keeps ``password: REPLACE_ME`` from
matching inside ``db-password: REPLACE_ME``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from scripts._secrets_errors import IncompleteRenderError
from scripts._secrets_models import PLACEHOLDER_MARKER, SecretField, SecretSet, Slot, SlotMode

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(
    rf"(?<![A-Za-z0-9_]){re.escape(PLACEHOLDER_MARKER)}(?:_[A-Z0-9]+)+"
)


def _slot_pattern(slot: Slot) -> re.Pattern[str]:
    return re.compile(
        r"^(?P<indent>[ \t]*(?:-[ \t]+)?)"
        + re.escape(slot.token)
        + r"(?P<trail>[ \t]*(?:#[^\r\n]*)?)(?=\r?$)",
        re.MULTILINE,
    )


def _indent_continuation(value: str, indent: str) -> str:
    """Indent every line after the first so block scalars stay valid."""

    if "\n" not in value:
        return value
    padding = re.sub(r"[^\t]", " ", indent)
    first, *rest = value.rstrip("\n").split("\n")
    return "\n".join([first, *(f"{padding}{line}" if line else line for line in rest)])


def substitute_slot(text: str, slot: Slot, value: str) -> tuple[str, int]:
    """Replace *slot* in *text* and return the new text with the match count.

    Examples
    --------
    >>> substitute_slot("  db-password: REPLACE_ME\\n", Slot("db-password: "), "x")
    ('  db-password: x\\n', 1)
    """

    def _replace(match: re.Match[str]) -> str:
        indent = match.group("indent")
        rendered = _indent_continuation(value, indent)
        return f"{indent}{slot.prefix}{rendered}{match.group('trail')}"

    count = 0 if slot.mode is SlotMode.ALL else 1
    return _slot_pattern(slot).subn(_replace, text, count=count)


def find_placeholders(text: str) -> list[tuple[int, str]]:
    """Return ``(line_number, token)`` for every placeholder left in *text*."""

    found = []
    for number, line in enumerate(text.splitlines(), start=1):
        found.extend((number, match.group(0)) for match in PLACEHOLDER_PATTERN.finditer(line))
    return found


def render_manifest(
    template: str,
    fields: Iterable[SecretField],
    secrets: SecretSet,
    *,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> str:
    """Return *template* with every field's slots filled in.

    Raises
    ------
    IncompleteRenderError
        Raised when any placeholder survives substitution.
    """

    rendered = template
    for item in fields:
        value = secrets.value(item.name)
        for slot in item.slots:
            rendered, count = substitute_slot(rendered, slot, value)
            if count == 0:
                log.debug("Slot %r for %s not present in template", slot.token, item.name)

    leftovers = find_placeholders(rendered)
    if leftovers:
        raise IncompleteRenderError(leftovers)
    return rendered


__all__ = [
    "PLACEHOLDER_PATTERN",
    "find_placeholders",
    "render_manifest",
    "substitute_slot",
]
