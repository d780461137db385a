"""Resolve CLI, environment and filesystem inputs for secret generation."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from scripts._secrets_errors import (
    InvalidOverlayError,
    MissingCredentialsError,
    MissingTemplateError,
)

DEFAULT_OVERLAY = "etcdme-nbg1-dc3"
DEFAULT_OVERLAYS_ROOT = Path("argocd") / "overlays"
EXAMPLE_FILENAME = "secrets.example.yaml"
SECRETS_FILENAME = "secrets.sops.yaml"


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    An empty environment variable counts as unset, so a blank entry in
    ``.env`` falls back to the default. An explicit *env* mapping, even an
    empty one, replaces ``os.environ``.

    Examples
    --------
    >>> resolve_input(None, InputResolution("OVERLAY", default="dev"), env={})
    'dev'
    >>> resolve_input(None, InputResolution("OVERLAY", as_path=True), env={"OVERLAY": "x"})
    PosixPath('x')
    """

    if param_value is not None:
        return param_value

    env_value = (os.environ if env is None else env).get(resolution.env_key)
    if env_value:
        return Path(env_value) if resolution.as_path else env_value

    return resolution.default


@dataclass(frozen=True, slots=True)
class OverlayPaths:
    """Template and ciphertext locations for one overlay."""

    overlay: str
    example_file: Path
    secrets_file: Path


def overlay_paths(root: Path, overlay: str) -> OverlayPaths:
    """Return the file pair for *overlay* under *root*.

    Raises
    ------
    InvalidOverlayError
        Raised when the overlay is empty or not a single path component.

    Examples
    --------
    >>> overlay_paths(Path("argocd/overlays"), "lab").secrets_file
    PosixPath('argocd/overlays/lab/secrets.sops.yaml')
    """

    name = overlay.strip()
    if not name:
        msg = "Overlay name must not be empty"
        raise InvalidOverlayError(msg)
    if name in {".", ".."} or Path(name).name != name or "/" in name or "\\" in name:
        msg = f"Overlay name {overlay!r} must be a single directory name"
        raise InvalidOverlayError(msg)
    overlay_dir = root / name
    return OverlayPaths(
        overlay=name,
        example_file=overlay_dir / EXAMPLE_FILENAME,
        secrets_file=overlay_dir / SECRETS_FILENAME,
    )


def require_template(paths: OverlayPaths) -> None:
    """Raise :class:`MissingTemplateError` when the example file is absent."""

    if not paths.example_file.is_file():
        raise MissingTemplateError(paths.example_file)


def require_credentials(
    names: cabc.Iterable[str],
    env: cabc.Mapping[str, str],
) -> dict[str, str]:
    """Return the required variables, failing with every missing name.

    Empty values count as missing.

    Examples
    --------
    >>> require_credentials(["A"], {"A": "1"})
    {'A': '1'}
    """

    found: dict[str, str] = {}
    missing: list[str] = []
    for name in names:
        value = env.get(name)
        if value:
            found[name] = value
        else:
            missing.append(name)
    if missing:
        raise MissingCredentialsError(missing)
    return found


__all__ = [
    "DEFAULT_OVERLAY",
    "DEFAULT_OVERLAYS_ROOT",
    "EXAMPLE_FILENAME",
    "SECRETS_FILENAME",
    "InputResolution",
    "OverlayPaths",
    "overlay_paths",
    "require_credentials",
    "require_template",
    "resolve_input",
]
