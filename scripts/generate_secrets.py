#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "plumbum", "pyyaml"]
# ///
"""Generate the encrypted secrets file for an ArgoCD overlay.

The helper is idempotent: values already present in the overlay's
``secrets.sops.yaml`` are preserved, missing ones are generated, and
external credentials are taken from the environment. It:

- checks the required credentials (AWS and the sops age identity);
- decrypts the existing secrets file when possible;
- renders ``secrets.example.yaml`` with the resolved values; and
- re-encrypts the result in place with sops.

Examples
--------
>>> python scripts/generate_secrets.py etcdme-nbg1-dc3
"""

from __future__ import annotations

import logging
import os
import sys
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter
from scripts._secrets_catalogue import DEFAULT_CATALOGUE, SecretCatalogue, load_catalogue
from scripts._secrets_errors import MissingCredentialsError, SecretsError
from scripts._secrets_inputs import (
    DEFAULT_OVERLAY,
    DEFAULT_OVERLAYS_ROOT,
    InputResolution,
    OverlayPaths,
    overlay_paths,
    resolve_input,
)
from scripts._secrets_resolution import ResolvedManifest, resolve_manifest
from scripts._sops import EncryptionService, SopsClient

app = App(help="Generate the encrypted secrets file for an ArgoCD overlay.")
logger = logging.getLogger(__name__)

OverlayArg = Annotated[str | None, Parameter(help="Overlay directory name.")]
OverlaysRootArg = Annotated[Path | None, Parameter(help="Directory holding the overlays.")]
CatalogueArg = Annotated[Path | None, Parameter(help="YAML secret catalogue.")]
ForceArg = Annotated[
    bool, Parameter(help="Re-encrypt even when no secret changed (e.g. new sops recipients).")
]
VerboseArg = Annotated[bool, Parameter(help="Enable debug logging.")]


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    """Resolved inputs for one generator run."""

    paths: OverlayPaths
    catalogue: SecretCatalogue


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Outcome of :func:`generate_secrets`."""

    resolved: ResolvedManifest
    written: bool


def resolve_generation_config(
    overlay: str | None,
    overlays_root: Path | None,
    catalogue: Path | None,
    env: cabc.Mapping[str, str] | None = None,
) -> GenerationConfig:
    """Resolve CLI values, environment fallbacks and defaults.

    Raises
    ------
    InvalidOverlayError
        Raised when the overlay name is unusable.
    CatalogueError
        Raised when a catalogue file is given but invalid.
    """

    resolved_overlay = resolve_input(
        overlay,
        InputResolution(env_key="SECRETS_OVERLAY", default=DEFAULT_OVERLAY),
        env,
    )
    resolved_root = resolve_input(
        overlays_root,
        InputResolution(env_key="OVERLAYS_ROOT", default=DEFAULT_OVERLAYS_ROOT, as_path=True),
        env,
    )
    resolved_catalogue = resolve_input(
        catalogue,
        InputResolution(env_key="SECRETS_CATALOGUE", as_path=True),
        env,
    )
    return GenerationConfig(
        paths=overlay_paths(Path(resolved_root or DEFAULT_OVERLAYS_ROOT), str(resolved_overlay)),
        catalogue=(
            load_catalogue(Path(resolved_catalogue))
            if resolved_catalogue is not None
            else DEFAULT_CATALOGUE
        ),
    )


def generate_secrets(
    config: GenerationConfig,
    env: cabc.Mapping[str, str],
    *,
    sops: EncryptionService,
    force: bool = False,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> GenerationResult:
    """Resolve, render and encrypt the overlay's secrets file.

    Parameters
    ----------
    config : GenerationConfig
        Overlay file pair and secret catalogue.
    env : Mapping[str, str]
        Environment providing external credentials.
    sops : EncryptionService
        Collaborator used to decrypt the prior file and encrypt the result.
    force : bool, optional
        Re-encrypt even when the rendered manifest matches the prior one,
        for example after recipients change in ``.sops.yaml``.
    log : Logger, optional
        Progress logger; secret values are never logged.

    Returns
    -------
    GenerationResult
        Resolved manifest and whether the ciphertext was rewritten.
    """

    log.info("Overlay: %s", config.paths.overlay)
    resolved = resolve_manifest(
        config.paths,
        env,
        sops=sops,
        catalogue=config.catalogue,
        log=log,
    )

    if resolved.unchanged and not force:
        log.info("Secrets unchanged; leaving %s untouched", config.paths.secrets_file)
        return GenerationResult(resolved=resolved, written=False)

    log.info("Encrypting with sops...")
    sops.encrypt(resolved.plaintext, config.paths.secrets_file)
    log.info("Secrets file written: %s", config.paths.secrets_file)
    return GenerationResult(resolved=resolved, written=True)


def print_summary(result: GenerationResult) -> None:
    """Print how each secret was resolved, without values."""

    print("Secrets resolved:")
    for name, item in result.resolved.secrets.items():
        print(f"  - {name}: {item.source}")


def print_next_steps(paths: OverlayPaths) -> None:
    print("\nNext steps:")
    print(f"  1. Commit: git add {paths.secrets_file} && git commit -m 'chore: update secrets'")
    print("  2. Push: git push")
    print("  3. ArgoCD will sync automatically")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(message)s",
        stream=sys.stderr,
    )


@app.default
def main(
    overlay: OverlayArg = None,
    *,
    overlays_root: OverlaysRootArg = None,
    catalogue: CatalogueArg = None,
    force: ForceArg = False,
    verbose: VerboseArg = False,
) -> int:
    """Generate or refresh an overlay's encrypted secrets file.

    Parameters
    ----------
    overlay : str | None
        Overlay directory name; falls back to ``SECRETS_OVERLAY`` and then
        ``etcdme-nbg1-dc3``.
    overlays_root : Path | None
        Directory holding the overlays; falls back to ``OVERLAYS_ROOT`` and
        then ``argocd/overlays``.
    catalogue : Path | None
        YAML secret catalogue; falls back to ``SECRETS_CATALOGUE`` and then
        the built-in catalogue.
    force : bool
        Re-encrypt even when no secret changed.
    verbose : bool
        Enable debug logging.

    Returns
    -------
    int
        Exit code (0 for success).
    """
    _configure_logging(verbose)
    env = dict(os.environ)

    try:
        config = resolve_generation_config(overlay, overlays_root, catalogue, env)
        result = generate_secrets(config, env, sops=SopsClient(env), force=force)
    except MissingCredentialsError as exc:
        print("error: Missing required environment variables:", file=sys.stderr)
        for name in exc.missing:
            print(f"  - {name}", file=sys.stderr)
        print("Configure these in .env (see .env.example)", file=sys.stderr)
        return 1
    except SecretsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print_summary(result)
    if result.written:
        print_next_steps(config.paths)
    else:
        print("\nNo changes to commit.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
