"""Unit tests for secret catalogues."""

from __future__ import annotations

from pathlib import Path

import pytest

from scripts._secrets_catalogue import DEFAULT_CATALOGUE, SecretCatalogue, load_catalogue
from scripts._secrets_errors import CatalogueError
from scripts._secrets_models import (
    FieldAddress,
    FromEnvironment,
    Generate,
    Linked,
    LiteralValue,
    SecretField,
    Slot,
    SlotMode,
)


def test_default_catalogue_requires_external_credentials() -> None:
    assert DEFAULT_CATALOGUE.required_environment() == (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_HOSTED_ZONE_ID",
        "SOPS_AGE_KEY",
    ), "Default catalogue should require the four external credentials in order"


def test_default_catalogue_links_shared_database_passwords() -> None:
    linked = {item.name: item.policy for item in DEFAULT_CATALOGUE.linked_fields()}
    assert linked == {
        "keycloak-postgres-password": Linked("keycloak-db-password"),
        "n8n-app-db-password": Linked("n8n-db-password"),
    }, "Database passwords should mirror their canonical fields"


def test_default_catalogue_scopes_shared_field_names() -> None:
    for name in ("n8n-client-secret", "uptime-kuma-client-secret", "uptime-kuma-admin-password"):
        address = DEFAULT_CATALOGUE.get(name).address
        assert address is not None, f"{name} should read its prior value"
        assert address.block is not None, f"{name} should be scoped to a block"


def test_default_catalogue_fills_every_occurrence_except_keycloak_password() -> None:
    single = [
        item.name
        for item in DEFAULT_CATALOGUE
        if any(slot.mode is SlotMode.ONCE for slot in item.slots)
    ]
    assert single == ["keycloak-postgres-password"], (
        "Only the bare Keycloak password line should be filled once"
    )


def test_linked_fields_follow_chains() -> None:
    catalogue = SecretCatalogue(
        (
            SecretField("third", Linked("second"), ()),
            SecretField("second", Linked("first"), ()),
            SecretField("first", Generate(), ()),
        )
    )
    order = [item.name for item in catalogue.linked_fields()]
    assert order == ["second", "third"], "Canonical links must resolve before dependants"


def test_catalogue_rejects_dangling_link() -> None:
    with pytest.raises(CatalogueError, match="unknown field 'missing'"):
        SecretCatalogue((SecretField("copy", Linked("missing"), ()),))


def test_catalogue_rejects_link_cycle() -> None:
    with pytest.raises(CatalogueError, match="cycle"):
        SecretCatalogue(
            (
                SecretField("a", Linked("b"), ()),
                SecretField("b", Linked("a"), ()),
            )
        )


def test_catalogue_rejects_duplicate_names() -> None:
    with pytest.raises(CatalogueError, match="Duplicate"):
        SecretCatalogue(
            (
                SecretField("token", Generate(), ()),
                SecretField("token", LiteralValue("x"), ()),
            )
        )


def test_catalogue_rejects_placeholder_literal() -> None:
    with pytest.raises(CatalogueError, match="must not start"):
        SecretCatalogue((SecretField("token", LiteralValue("REPLACE_ME"), ()),))


def test_get_unknown_field_raises() -> None:
    with pytest.raises(CatalogueError, match="Unknown secret field"):
        DEFAULT_CATALOGUE.get("nope")


def test_load_catalogue_parses_policies(tmp_path: Path) -> None:
    path = tmp_path / "catalogue.yaml"
    path.write_text(
        """
fields:
  - name: api-token
    policy: generate:16
    address: {key: token, block: api}
    slots:
      - {prefix: "token: ", placeholder: REPLACE_API_TOKEN, mode: all}
  - name: region
    policy: literal:eu-central
    slots:
      - {prefix: "region: "}
  - name: access-key
    policy: env:ACCESS_KEY
    preserve: false
    slots:
      - {prefix: "access-key: "}
  - name: token-copy
    policy: link:api-token
    slots:
      - {prefix: "API_TOKEN: ", placeholder: REPLACE_API_TOKEN}
""",
        encoding="utf-8",
    )

    catalogue = load_catalogue(path)

    token = catalogue.get("api-token")
    assert token.policy == Generate(length=16), "generate:N should set the length"
    assert token.address == FieldAddress("token", block="api"), "Address should be scoped"
    assert token.slots == (
        Slot("token: ", "REPLACE_API_TOKEN", SlotMode.ALL),
    ), "Slot mode should parse"
    assert catalogue.get("region").policy == LiteralValue("eu-central"), "Literal should parse"
    access = catalogue.get("access-key")
    assert access.policy == FromEnvironment("ACCESS_KEY"), "env:VAR should parse"
    assert access.preserve is False, "preserve flag should be honoured"
    assert catalogue.get("token-copy").policy == Linked("api-token"), "link:F should parse"
    assert catalogue.required_environment() == ("ACCESS_KEY",), "Env vars should be collected"


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("fields: {}", "'fields' list"),
        ("fields:\n  - policy: generate", "needs a name"),
        ("fields:\n  - name: a\n    policy: random", "Unknown policy"),
        ("fields:\n  - name: a\n    policy: generate:big", "Invalid generate length"),
        (
            "fields:\n  - name: a\n    policy: generate\n    slots:\n      - {prefix: 'a: ', mode: twice}",
            "Unknown slot mode",
        ),
        ("fields:\n  - name: a\n    policy: generate\n    address: {block: x}", "'key'"),
        ("fields: [", "Failed to read catalogue"),
    ],
)
def test_load_catalogue_rejects_malformed_files(tmp_path: Path, body: str, message: str) -> None:
    path = tmp_path / "catalogue.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(CatalogueError, match=message):
        load_catalogue(path)
