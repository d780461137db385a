"""Resolve overlay secrets and render the plaintext manifest.

Resolution runs in two passes. Independent fields keep a usable prior value
when they allow preservation, otherwise their policy produces one. Linked
fields then copy their canonical field's value, so credentials referenced
from several places in the manifest always agree.

Concurrent runs against the same overlay are not coordinated; the last
writer wins.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections import abc as cabc
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeAlias, cast

from scripts._secrets_catalogue import SecretCatalogue
from scripts._secrets_errors import CatalogueError, DecryptFailureError
from scripts._secrets_inputs import OverlayPaths, require_credentials, require_template
from scripts._secrets_manifest import ManifestParseError, PriorManifest, same_documents
from scripts._secrets_models import (
    GENERATED_LENGTH,
    PLACEHOLDER_MARKER,
    FromEnvironment,
    Generate,
    Linked,
    LiteralValue,
    SecretField,
    SecretSet,
    SecretSource,
    is_absent,
)
from scripts._secrets_render import render_manifest
from scripts._sops import EncryptionService

logger = logging.getLogger(__name__)

Log: TypeAlias = logging.Logger | logging.LoggerAdapter
Generator: TypeAlias = cabc.Callable[[int], str]

PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_secret(length: int = GENERATED_LENGTH) -> str:
    """Return a random alphanumeric string from a CSPRNG.

    Values that happen to start with the placeholder marker are redrawn.

    Examples
    --------
    >>> value = generate_secret()
    >>> len(value), value.isalnum()
    (32, True)
    """

    while True:
        value = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
        if not value.startswith(PLACEHOLDER_MARKER):
            return value


@dataclass(frozen=True, slots=True)
class PriorSecrets:
    """Decrypted prior manifest, if one could be read."""

    plaintext: str | None = field(default=None, repr=False)
    manifest: PriorManifest | None = None

    @property
    def available(self) -> bool:
        return self.manifest is not None


@dataclass(frozen=True, slots=True)
class ResolvedManifest:
    """Outcome of a resolution run."""

    overlay: str
    plaintext: str = field(repr=False)
    secrets: SecretSet
    prior: PriorSecrets

    @property
    def unchanged(self) -> bool:
        """Return True when the rendered manifest matches the prior one.

        Documents are compared structurally because ``sops --decrypt``
        re-emits YAML and does not reproduce the template's formatting.
        """

        if self.prior.plaintext is None:
            return False
        return same_documents(self.prior.plaintext, self.plaintext)


def load_prior(
    existing_path: Path | None,
    sops: EncryptionService,
    *,
    log: Log = logger,
) -> PriorSecrets:
    """Decrypt and index the existing secrets file.

    Decryption or parse failures are logged and treated as "no prior
    secrets" so a corrupt or foreign-key file never blocks regeneration.
    """

    if existing_path is None or not existing_path.exists():
        return PriorSecrets()

    log.info("Existing secrets file found, preserving values: %s", existing_path)
    try:
        plaintext = sops.decrypt(existing_path)
        manifest = PriorManifest.parse(plaintext)
    except (DecryptFailureError, ManifestParseError) as exc:
        log.warning("Could not read existing secrets, starting fresh: %s", exc)
        return PriorSecrets()

    log.info("Decrypted existing secrets (%d blocks)", len(manifest.blocks))
    return PriorSecrets(plaintext=plaintext, manifest=manifest)


def _prior_value(item: SecretField, prior: PriorManifest | None) -> str | None:
    if prior is None or not item.preserve or item.address is None:
        return None
    value = prior.lookup(item.address)
    return None if is_absent(value) else value


def _apply_policy(
    item: SecretField,
    env: cabc.Mapping[str, str],
    generator: Generator,
) -> tuple[str, SecretSource]:
    policy = item.policy
    match policy:
        case Generate(length=length):
            value, source = generator(length), SecretSource.GENERATED
        case FromEnvironment(variable=variable):
            value, source = env.get(variable, ""), SecretSource.ENVIRONMENT
        case LiteralValue(value=literal):
            value, source = literal, SecretSource.LITERAL
        case _:
            msg = f"Field {item.name!r} has no independent policy"
            raise CatalogueError(msg)
    if is_absent(value):
        msg = f"Resolved value for {item.name!r} is empty or starts with {PLACEHOLDER_MARKER!r}"
        raise CatalogueError(msg)
    return value, source


def resolve_secret_set(
    catalogue: SecretCatalogue,
    env: cabc.Mapping[str, str],
    prior: PriorManifest | None = None,
    *,
    generator: Generator = generate_secret,
    log: Log = logger,
) -> SecretSet:
    """Resolve every catalogue field to a value.

    Parameters
    ----------
    catalogue : SecretCatalogue
        Fields to resolve.
    env : Mapping[str, str]
        Environment supplying ``FromEnvironment`` values.
    prior : PriorManifest | None, optional
        Decrypted previous manifest used to preserve existing values.
    generator : Callable[[int], str], optional
        Random value source, replaceable in tests.
    log : Logger, optional
        Destination for progress messages. Values are never logged.

    Returns
    -------
    SecretSet
        Resolved values tagged with their source.
    """

    resolved = SecretSet()
    for item in catalogue.independent_fields():
        existing = _prior_value(item, prior)
        if existing is not None:
            resolved.assign(item.name, existing, SecretSource.PRESERVED)
        else:
            value, source = _apply_policy(item, env, generator)
            resolved.assign(item.name, value, source)
        log.debug("Resolved %s (%s)", item.name, resolved[item.name].source)

    for item in catalogue.linked_fields():
        canonical = cast(Linked, item.policy).canonical
        resolved.assign(item.name, resolved.value(canonical), SecretSource.LINKED)
        log.debug("Resolved %s from %s", item.name, canonical)

    return resolved


def resolve_manifest(
    paths: OverlayPaths,
    env: cabc.Mapping[str, str],
    *,
    sops: EncryptionService,
    catalogue: SecretCatalogue,
    generator: Generator = generate_secret,
    log: Log = logger,
) -> ResolvedManifest:
    """Produce the fully populated plaintext manifest for an overlay.

    Credentials and the template are checked before anything is decrypted
    or written. The caller is responsible for encrypting the result.

    Raises
    ------
    MissingCredentialsError
        Raised when required environment variables are missing.
    MissingTemplateError
        Raised when the overlay has no example file.
    IncompleteRenderError
        Raised when placeholders survive rendering.
    CatalogueError
        Raised when the catalogue cannot address the prior manifest.
    """

    require_credentials(catalogue.required_environment(), env)
    require_template(paths)

    prior = load_prior(paths.secrets_file, sops, log=log)
    resolved = resolve_secret_set(
        catalogue,
        env,
        prior.manifest,
        generator=generator,
        log=log,
    )
    template = paths.example_file.read_bytes().decode("utf-8")
    plaintext = render_manifest(template, catalogue, resolved, log=log)
    return ResolvedManifest(
        overlay=paths.overlay,
        plaintext=plaintext,
        secrets=resolved,
        prior=prior,
    )


__all__ = [
    "PASSWORD_ALPHABET",
    "PriorSecrets",
    "ResolvedManifest",
    "generate_secret",
    "load_prior",
    "resolve_manifest",
    "resolve_secret_set",
]
