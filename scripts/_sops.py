"""Thin wrapper around the ``sops`` CLI.

Decrypted plaintext is returned in memory. Encryption stages plaintext in a
private temporary directory that is removed on every exit path, and the
ciphertext replaces the target atomically so a failed run never leaves a
partial secrets file behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections import abc as cabc
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Protocol

from plumbum import CommandNotFound, local
from plumbum.commands.processes import ProcessExecutionError, ProcessTimedOut

from scripts._secrets_errors import DecryptFailureError, EncryptFailureError

logger = logging.getLogger(__name__)

SOPS_TIMEOUT_SECONDS = 120
YAML_FORMAT_ARGS = ("--input-type", "yaml", "--output-type", "yaml")


class EncryptionService(Protocol):
    """Opaque decrypt/encrypt collaborator used by the generator."""

    def decrypt(self, path: Path) -> str: ...

    def encrypt(self, plaintext: str, target: Path) -> None: ...


class SopsCommandError(RuntimeError):
    """Raised when a sops invocation fails for any reason."""


def _write_private(path: Path, payload: str) -> None:
    """Write *payload* to *path* with owner-only permissions."""

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())


def write_atomically(path: Path, payload: str) -> None:
    """Replace *path* with *payload*, leaving the old file intact on failure."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        _write_private(tmp_path, payload)
    except Exception:
        with suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise
    tmp_path.replace(path)
    os.chmod(path, 0o600)


@contextmanager
def staged_plaintext(plaintext: str, name: str) -> cabc.Iterator[Path]:
    """Yield a private file holding *plaintext*; it is removed on exit."""

    with tempfile.TemporaryDirectory(prefix="overlay-secrets-") as scratch:
        staged = Path(scratch) / name
        _write_private(staged, plaintext)
        yield staged


class SopsClient:
    """Encryption service backed by the ``sops`` binary.

    Parameters
    ----------
    env
        Environment for the subprocess. It must carry the age identity
        (``SOPS_AGE_KEY``) needed to decrypt existing files.
    binary
        Command name or path of the sops executable.
    timeout
        Seconds before an invocation is abandoned.
    """

    def __init__(
        self,
        env: cabc.Mapping[str, str] | None = None,
        *,
        binary: str = "sops",
        timeout: int = SOPS_TIMEOUT_SECONDS,
    ) -> None:
        self._env = dict(os.environ if env is None else env)
        self._binary = binary
        self._timeout = timeout

    def run(self, *args: str) -> str:
        """Run sops with *args* and return its standard output."""

        try:
            bound = local[self._binary][list(args)]
            _, stdout, _ = bound.run(env=self._env, timeout=self._timeout)
        except CommandNotFound as exc:
            msg = f"{self._binary} is not installed or not on PATH"
            raise SopsCommandError(msg) from exc
        except ProcessTimedOut as exc:
            msg = f"{self._binary} timed out after {self._timeout}s"
            raise SopsCommandError(msg) from exc
        except ProcessExecutionError as exc:
            msg = f"{self._binary} exited with status {exc.retcode}: {exc.stderr.strip()}"
            raise SopsCommandError(msg) from exc
        return stdout

    def decrypt(self, path: Path) -> str:
        """Return the plaintext of the encrypted file at *path*.

        Raises
        ------
        DecryptFailureError
            Raised when sops cannot decrypt the file.
        """

        try:
            return self.run("--decrypt", *YAML_FORMAT_ARGS, str(path))
        except SopsCommandError as exc:
            msg = f"Could not decrypt {path}: {exc}"
            raise DecryptFailureError(msg) from exc

    def encrypt(self, plaintext: str, target: Path) -> None:
        """Encrypt *plaintext* and atomically write the ciphertext to *target*.

        ``--filename-override`` makes sops apply the ``.sops.yaml`` creation
        rule for *target* rather than for the scratch file.

        Raises
        ------
        EncryptFailureError
            Raised when sops fails or the ciphertext cannot be written.
        """

        with staged_plaintext(plaintext, target.name) as staged:
            try:
                ciphertext = self.run(
                    "--encrypt",
                    "--filename-override",
                    str(target),
                    *YAML_FORMAT_ARGS,
                    str(staged),
                )
            except SopsCommandError as exc:
                msg = f"Could not encrypt {target}: {exc}"
                raise EncryptFailureError(msg) from exc
        if not ciphertext.strip():
            msg = f"sops produced no ciphertext for {target}"
            raise EncryptFailureError(msg)
        try:
            write_atomically(target, ciphertext)
        except OSError as exc:
            msg = f"Could not write {target}: {exc}"
            raise EncryptFailureError(msg) from exc
        logger.debug("Wrote ciphertext to %s", target)


__all__ = [
    "SOPS_TIMEOUT_SECONDS",
    "EncryptionService",
    "SopsClient",
    "SopsCommandError",
    "staged_plaintext",
    "write_atomically",
]
