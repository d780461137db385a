"""Secret catalogues describing how each overlay secret is resolved.

The built-in catalogue mirrors the homelab overlay's
``secrets.example.yaml``. Other overlays can supply a YAML catalogue::

    fields:
      - name: keycloak-db-password
        policy: generate            # generate | env:VAR | literal:VALUE | link:FIELD
        address: {key: db-password}
        slots:
          - {prefix: "db-password: ", placeholder: REPLACE_ME}
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from scripts._secrets_errors import CatalogueError
from scripts._secrets_models import (
    DEFAULT_PLACEHOLDER,
    PLACEHOLDER_MARKER,
    FieldAddress,
    FromEnvironment,
    Generate,
    Linked,
    LiteralValue,
    ResolutionPolicy,
    SecretField,
    Slot,
    SlotMode,
)


@dataclass(frozen=True, slots=True)
class SecretCatalogue:
    """Validated, ordered collection of secret fields."""

    fields: tuple[SecretField, ...]

    def __post_init__(self) -> None:
        _validate_fields(self.fields)

    def __iter__(self) -> Iterator[SecretField]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def get(self, name: str) -> SecretField:
        for item in self.fields:
            if item.name == name:
                return item
        msg = f"Unknown secret field {name!r}"
        raise CatalogueError(msg)

    def independent_fields(self) -> tuple[SecretField, ...]:
        """Return fields that resolve without consulting other fields."""

        return tuple(item for item in self.fields if not item.is_linked)

    def linked_fields(self) -> tuple[SecretField, ...]:
        """Return linked fields ordered so every canonical precedes its links.

        Examples
        --------
        >>> catalogue = SecretCatalogue((
        ...     SecretField("c", Linked("b"), ()),
        ...     SecretField("b", Linked("a"), ()),
        ...     SecretField("a", Generate(), ()),
        ... ))
        >>> [item.name for item in catalogue.linked_fields()]
        ['b', 'c']
        """

        ordered: list[SecretField] = []
        placed = {item.name for item in self.independent_fields()}
        pending = [item for item in self.fields if item.is_linked]
        while pending:
            ready = [item for item in pending if item.policy.canonical in placed]
            # _validate_fields rejects cycles, so progress is guaranteed.
            for item in ready:
                ordered.append(item)
                placed.add(item.name)
            pending = [item for item in pending if item.name not in placed]
        return tuple(ordered)

    def required_environment(self) -> tuple[str, ...]:
        """Return environment variables referenced by the catalogue."""

        names: dict[str, None] = {}
        for item in self.fields:
            if isinstance(item.policy, FromEnvironment):
                names.setdefault(item.policy.variable, None)
        return tuple(names)


def _validate_fields(fields: Iterable[SecretField]) -> None:
    """Reject duplicate names, dangling links, cycles and placeholder values."""

    by_name: dict[str, SecretField] = {}
    for item in fields:
        if item.name in by_name:
            msg = f"Duplicate secret field {item.name!r}"
            raise CatalogueError(msg)
        by_name[item.name] = item
        policy = item.policy
        if isinstance(policy, LiteralValue) and policy.value.startswith(PLACEHOLDER_MARKER):
            msg = f"Literal for {item.name!r} must not start with {PLACEHOLDER_MARKER!r}"
            raise CatalogueError(msg)
        if isinstance(policy, Generate) and policy.length < 1:
            msg = f"Generated length for {item.name!r} must be positive"
            raise CatalogueError(msg)

    for item in by_name.values():
        seen = {item.name}
        current = item
        while isinstance(current.policy, Linked):
            target = current.policy.canonical
            if target not in by_name:
                msg = f"Secret {current.name!r} links to unknown field {target!r}"
                raise CatalogueError(msg)
            if target in seen:
                msg = f"Link cycle detected through {item.name!r}"
                raise CatalogueError(msg)
            seen.add(target)
            current = by_name[target]


def _policy_from_text(name: str, raw: object) -> ResolutionPolicy:
    """Parse ``generate``, ``generate:N``, ``env:VAR``, ``literal:V`` or ``link:F``."""

    if not isinstance(raw, str) or not raw:
        msg = f"Field {name!r} needs a policy string"
        raise CatalogueError(msg)
    kind, _, argument = raw.partition(":")
    match kind:
        case "generate":
            if not argument:
                return Generate()
            try:
                return Generate(length=int(argument))
            except ValueError as exc:
                msg = f"Invalid generate length for {name!r}: {argument!r}"
                raise CatalogueError(msg) from exc
        case "env" if argument:
            return FromEnvironment(argument)
        case "literal":
            return LiteralValue(argument)
        case "link" if argument:
            return Linked(argument)
    msg = f"Unknown policy {raw!r} for field {name!r}"
    raise CatalogueError(msg)


def _address_from_mapping(name: str, raw: object) -> FieldAddress | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping) or not raw.get("key"):
        msg = f"Address for {name!r} must be a mapping with a 'key'"
        raise CatalogueError(msg)
    block = raw.get("block")
    return FieldAddress(key=str(raw["key"]), block=str(block) if block else None)


def _slot_from_mapping(name: str, raw: object) -> Slot:
    if not isinstance(raw, Mapping) or "prefix" not in raw:
        msg = f"Slots for {name!r} must be mappings with a 'prefix'"
        raise CatalogueError(msg)
    try:
        mode = SlotMode(str(raw.get("mode", SlotMode.ONCE)))
    except ValueError as exc:
        msg = f"Unknown slot mode {raw.get('mode')!r} for {name!r}"
        raise CatalogueError(msg) from exc
    return Slot(
        prefix=str(raw["prefix"]),
        placeholder=str(raw.get("placeholder", DEFAULT_PLACEHOLDER)),
        mode=mode,
    )


def _field_from_mapping(raw: Mapping[str, Any]) -> SecretField:
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        msg = "Every catalogue field needs a name"
        raise CatalogueError(msg)
    slots = raw.get("slots") or []
    if not isinstance(slots, list):
        msg = f"Slots for {name!r} must be a list"
        raise CatalogueError(msg)
    preserve = raw.get("preserve", True)
    if not isinstance(preserve, bool):
        msg = f"'preserve' for {name!r} must be a boolean"
        raise CatalogueError(msg)
    return SecretField(
        name=name,
        policy=_policy_from_text(name, raw.get("policy")),
        address=_address_from_mapping(name, raw.get("address")),
        slots=tuple(_slot_from_mapping(name, slot) for slot in slots),
        preserve=preserve,
        description=str(raw.get("description", "")),
    )


def load_catalogue(path: Path) -> SecretCatalogue:
    """Load a catalogue from a YAML file.

    Raises
    ------
    CatalogueError
        Raised when the file is unreadable or structurally invalid.
    """

    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Failed to read catalogue {path}: {exc}"
        raise CatalogueError(msg) from exc
    if not isinstance(payload, Mapping) or not isinstance(payload.get("fields"), list):
        msg = f"Catalogue {path} must contain a 'fields' list"
        raise CatalogueError(msg)
    fields = []
    for raw in payload["fields"]:
        if not isinstance(raw, Mapping):
            msg = f"Catalogue {path} has a non-mapping field entry"
            raise CatalogueError(msg)
        fields.append(_field_from_mapping(raw))
    return SecretCatalogue(tuple(fields))


def _generated(
    name: str,
    address: FieldAddress,
    *slots: Slot,
    description: str = "",
) -> SecretField:
    return SecretField(name, Generate(), slots, address=address, description=description)


def _from_env(name: str, variable: str, slot: Slot, description: str) -> SecretField:
    return SecretField(
        name,
        FromEnvironment(variable),
        (slot,),
        preserve=False,
        description=description,
    )


def _every(prefix: str, placeholder: str = DEFAULT_PLACEHOLDER) -> Slot:
    return Slot(prefix, placeholder, SlotMode.ALL)


# Only the Keycloak postgres password fills a single line; a bare
# ``password: REPLACE_ME`` elsewhere belongs to another component.
DEFAULT_CATALOGUE = SecretCatalogue(
    (
        _from_env(
            "aws-access-key-id",
            "AWS_ACCESS_KEY_ID",
            _every("access-key-id: "),
            "Route53 access key for cert-manager and external-dns",
        ),
        _from_env(
            "aws-secret-access-key",
            "AWS_SECRET_ACCESS_KEY",
            _every("secret-access-key: "),
            "Route53 secret key",
        ),
        _from_env(
            "aws-hosted-zone-id",
            "AWS_HOSTED_ZONE_ID",
            _every("hosted-zone-id: "),
            "Route53 hosted zone",
        ),
        _from_env(
            "sops-age-key",
            "SOPS_AGE_KEY",
            _every("", placeholder="# AGE-SECRET-KEY-REPLACE_ME"),
            "age identity used by the in-cluster sops decryption",
        ),
        _generated(
            "keycloak-db-password",
            FieldAddress("db-password"),
            _every("db-password: "),
            description="Keycloak database password",
        ),
        SecretField(
            "keycloak-postgres-password",
            Linked("keycloak-db-password"),
            (Slot("password: "),),
            description="Postgres password shared with Keycloak",
        ),
        _generated(
            "grafana-admin-password",
            FieldAddress("admin-password"),
            _every("admin-password: "),
            description="Grafana admin password",
        ),
        _generated(
            "argocd-server-secret",
            FieldAddress("server.secretkey"),
            _every("server.secretkey: "),
            description="ArgoCD server signing key",
        ),
        _generated(
            "n8n-encryption-key",
            FieldAddress("N8N_ENCRYPTION_KEY"),
            _every("N8N_ENCRYPTION_KEY: ", "REPLACE_N8N_ENCRYPTION_KEY"),
        ),
        _generated(
            "n8n-client-secret",
            FieldAddress("client-secret", block="n8n-oauth2-proxy"),
            _every("client-secret: ", "REPLACE_N8N_CLIENT_SECRET"),
        ),
        _generated(
            "n8n-cookie-secret",
            FieldAddress("cookie-secret", block="n8n-oauth2-proxy"),
            _every("cookie-secret: ", "REPLACE_N8N_COOKIE_SECRET"),
        ),
        _generated(
            "n8n-db-password",
            FieldAddress("postgres-password", block="n8n-postgres"),
            _every("postgres-password: ", "REPLACE_N8N_DB_PASSWORD"),
        ),
        SecretField(
            "n8n-app-db-password",
            Linked("n8n-db-password"),
            (
                _every("DB_POSTGRESDB_PASSWORD: ", "REPLACE_N8N_DB_PASSWORD"),
                _every("password: ", "REPLACE_N8N_DB_PASSWORD"),
            ),
            description="n8n application copy of the n8n database password",
        ),
        _generated(
            "uptime-kuma-admin-password",
            FieldAddress("password", block="uptime-kuma-admin"),
            _every("password: ", "REPLACE_UPTIME_KUMA_ADMIN_PASSWORD"),
        ),
        _generated(
            "uptime-kuma-client-secret",
            FieldAddress("client-secret", block="uptime-kuma-oauth2-proxy"),
            _every("client-secret: ", "REPLACE_UPTIME_KUMA_CLIENT_SECRET"),
        ),
        _generated(
            "uptime-kuma-cookie-secret",
            FieldAddress("cookie-secret", block="uptime-kuma-oauth2-proxy"),
            _every("cookie-secret: ", "REPLACE_UPTIME_KUMA_COOKIE_SECRET"),
        ),
    )
)


__all__ = [
    "DEFAULT_CATALOGUE",
    "SecretCatalogue",
    "load_catalogue",
]
