"""Structured lookup of secret values in a decrypted manifest.

The decrypted ``secrets.sops.yaml`` is a multi-document YAML stream of
Kubernetes objects. Each document is indexed by ``metadata.name`` so a
secret is addressed as ``(block, key)`` rather than by its position in the
file.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

import yaml

from scripts._secrets_errors import CatalogueError
from scripts._secrets_models import FieldAddress

logger = logging.getLogger(__name__)

# Plain string sections are searched before base64 encoded ones.
FIELD_SECTIONS = ("stringData", "data")


class ManifestParseError(ValueError):
    """Raised when decrypted text is not a YAML document stream."""


@dataclass(frozen=True, slots=True)
class ManifestBlock:
    """Secret-bearing fields of a single manifest document."""

    name: str
    kind: str | None
    fields: Mapping[str, str] = field(repr=False)


def _decode_data_value(block_name: str, key: str, raw: str) -> str | None:
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.debug("Ignoring undecodable data field %s/%s", block_name, key)
        return None


def _collect_fields(document: Mapping[str, object], name: str, kind: str | None) -> dict[str, str]:
    """Flatten ``stringData``/``data`` into one mapping; ``stringData`` wins."""

    collected: dict[str, str] = {}
    for section in FIELD_SECTIONS:
        entries = document.get(section)
        if not isinstance(entries, Mapping):
            continue
        for key, raw in entries.items():
            if key in collected or not isinstance(raw, str):
                continue
            value: str | None = raw
            if section == "data" and kind == "Secret":
                value = _decode_data_value(name, key, raw)
            if value is not None:
                collected[key] = value
    return collected


@dataclass(frozen=True, slots=True)
class PriorManifest:
    """Index of the documents in a previously generated manifest."""

    blocks: tuple[ManifestBlock, ...]

    @classmethod
    def parse(cls, text: str) -> PriorManifest:
        """Index every named document in *text*.

        Scalars are loaded as strings so values such as ``0123`` or ``true``
        survive unchanged.

        Examples
        --------
        >>> manifest = PriorManifest.parse(
        ...     "kind: Secret\\nmetadata: {name: app}\\nstringData: {token: abc}\\n"
        ... )
        >>> manifest.lookup(FieldAddress("token", block="app"))
        'abc'
        """

        try:
            documents = list(yaml.load_all(text, Loader=yaml.BaseLoader))
        except yaml.YAMLError as exc:
            msg = f"Decrypted manifest is not valid YAML: {exc}"
            raise ManifestParseError(msg) from exc

        blocks = []
        for document in documents:
            if not isinstance(document, Mapping):
                continue
            metadata = document.get("metadata")
            name = metadata.get("name") if isinstance(metadata, Mapping) else None
            if not isinstance(name, str) or not name:
                continue
            kind = document.get("kind")
            kind = kind if isinstance(kind, str) else None
            blocks.append(
                ManifestBlock(name=name, kind=kind, fields=_collect_fields(document, name, kind))
            )
        return cls(tuple(blocks))

    def block_names(self) -> tuple[str, ...]:
        return tuple(block.name for block in self.blocks)

    def lookup(self, address: FieldAddress) -> str | None:
        """Return the value stored at *address*, or ``None`` when absent.

        A key found in several matching documents is accepted when every
        copy holds the same value, as happens when one secret is mirrored
        into several namespaces.

        Raises
        ------
        CatalogueError
            Raised when matching documents hold different values for the key.
        """

        candidates = [
            block
            for block in self.blocks
            if address.key in block.fields
            and (address.block is None or block.name == address.block)
        ]
        if not candidates:
            return None
        values = {block.fields[address.key] for block in candidates}
        if len(values) > 1:
            owners = ", ".join(block.name for block in candidates)
            if address.block is None:
                msg = (
                    f"Key {address.key!r} holds different values in several blocks "
                    f"({owners}); scope it with a block name"
                )
            else:
                msg = f"Block {address.block!r} is defined more than once with different {address.key!r} values"
            raise CatalogueError(msg)
        return candidates[0].fields[address.key]


def same_documents(left: str, right: str) -> bool:
    """Return True when both texts load to identical YAML document streams.

    Examples
    --------
    >>> same_documents("a: '1'\\n", "a: 1\\n")
    True
    """

    try:
        return list(yaml.load_all(left, Loader=yaml.BaseLoader)) == list(
            yaml.load_all(right, Loader=yaml.BaseLoader)
        )
    except yaml.YAMLError:
        return False


__all__ = [
    "ManifestBlock",
    "ManifestParseError",
    "PriorManifest",
    "same_documents",
]
