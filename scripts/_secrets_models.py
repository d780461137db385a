"""Data model for overlay secret resolution.

A :class:`SecretCatalogue` declares, for every secret in an overlay's example
manifest, where its prior value lives (:class:`FieldAddress`), how to
produce it when absent (a resolution policy), and which template slots
receive it (:class:`Slot`).

Examples
--------
>>> field = SecretField(
...     name="grafana-admin-password",
...     policy=Generate(),
...     address=FieldAddress(key="admin-password"),
...     slots=(Slot("admin-password: "),),
... )
>>> field.slots[0].token
'admin-password: REPLACE_ME'
"""

from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TypeAlias

PLACEHOLDER_MARKER = "REPLACE"
DEFAULT_PLACEHOLDER = "REPLACE_ME"
GENERATED_LENGTH = 32


def is_absent(value: str | None) -> bool:
    """Return True when *value* is missing, empty, or still a placeholder.

    Examples
    --------
    >>> is_absent("REPLACE_N8N_DB_PASSWORD")
    True
    >>> is_absent("s3cret")
    False
    """

    return not value or value.startswith(PLACEHOLDER_MARKER)


class SlotMode(enum.StrEnum):
    """How many occurrences of a slot token are substituted."""

    ONCE = "once"
    ALL = "all"


class SecretSource(enum.StrEnum):
    """Where a resolved value came from."""

    PRESERVED = "preserved"
    GENERATED = "generated"
    ENVIRONMENT = "environment"
    LITERAL = "literal"
    LINKED = "linked"


@dataclass(frozen=True, slots=True)
class FieldAddress:
    """Location of a secret in a decrypted manifest.

    ``block`` is the ``metadata.name`` of the owning document. Leave it unset
    only for keys that appear in a single document.
    """

    key: str
    block: str | None = None

    def __str__(self) -> str:
        return f"{self.block}/{self.key}" if self.block else self.key


@dataclass(frozen=True, slots=True)
class Slot:
    """A placeholder line in the example template."""

    prefix: str
    placeholder: str = DEFAULT_PLACEHOLDER
    mode: SlotMode = SlotMode.ONCE

    @property
    def token(self) -> str:
        """Return the literal text the slot replaces."""

        return f"{self.prefix}{self.placeholder}"


@dataclass(frozen=True, slots=True)
class Generate:
    """Produce a random alphanumeric value."""

    length: int = GENERATED_LENGTH


@dataclass(frozen=True, slots=True)
class FromEnvironment:
    """Read the value from an environment variable."""

    variable: str


@dataclass(frozen=True, slots=True)
class LiteralValue:
    """Substitute a fixed value."""

    value: str


@dataclass(frozen=True, slots=True)
class Linked:
    """Mirror the resolved value of the canonical field."""

    canonical: str


ResolutionPolicy: TypeAlias = Generate | FromEnvironment | LiteralValue | Linked


@dataclass(frozen=True, slots=True)
class SecretField:
    """A secret declared by the catalogue."""

    name: str
    policy: ResolutionPolicy
    slots: tuple[Slot, ...]
    address: FieldAddress | None = None
    preserve: bool = True
    description: str = ""

    @property
    def is_linked(self) -> bool:
        return isinstance(self.policy, Linked)


@dataclass(frozen=True, slots=True)
class ResolvedSecret:
    """A value chosen for a field, tagged with its origin."""

    value: str = field(repr=False)
    source: SecretSource


class SecretSet(Mapping[str, ResolvedSecret]):
    """Field name to resolved secret mapping built during one run.

    Values are hidden from ``repr`` so the set can be logged safely.
    """

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: dict[str, ResolvedSecret] = {}

    def __getitem__(self, name: str) -> ResolvedSecret:
        return self._items[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        summary = ", ".join(f"{name}={item.source}" for name, item in self._items.items())
        return f"SecretSet({summary})"

    def assign(self, name: str, value: str, source: SecretSource) -> None:
        """Record the value for *name*; a field is resolved only once."""

        if name in self._items:
            msg = f"Secret {name!r} resolved twice"
            raise ValueError(msg)
        self._items[name] = ResolvedSecret(value=value, source=source)

    def value(self, name: str) -> str:
        return self._items[name].value


__all__ = [
    "DEFAULT_PLACEHOLDER",
    "GENERATED_LENGTH",
    "PLACEHOLDER_MARKER",
    "FieldAddress",
    "FromEnvironment",
    "Generate",
    "Linked",
    "LiteralValue",
    "ResolutionPolicy",
    "ResolvedSecret",
    "SecretField",
    "SecretSet",
    "SecretSource",
    "Slot",
    "SlotMode",
    "is_absent",
]
