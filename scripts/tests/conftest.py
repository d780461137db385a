from __future__ import annotations

import base64
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scripts._secrets_errors import DecryptFailureError, EncryptFailureError  # noqa: E402

EXAMPLE_MANIFEST = """\
apiVersion: v1
kind: Secret
metadata:
  name: route53-credentials
  namespace: cert-manager
stringData:
  access-key-id: REPLACE_ME
  secret-access-key: REPLACE_ME
  hosted-zone-id: REPLACE_ME
---
apiVersion: v1
kind: Secret
metadata:
  name: sops-age
  namespace: argocd
stringData:
  keys.txt: |
    # AGE-SECRET-KEY-REPLACE_ME
---
apiVersion: v1
kind: Secret
metadata:
  name: keycloak-db
  namespace: keycloak
stringData:
  db-password: REPLACE_ME
---
apiVersion: v1
kind: Secret
metadata:
  name: keycloak-postgres
  namespace: keycloak
stringData:
  username: keycloak
  password: REPLACE_ME
---
apiVersion: v1
kind: Secret
metadata:
  name: grafana-admin
  namespace: monitoring
stringData:
  admin-user: admin
  admin-password: REPLACE_ME
---
apiVersion: v1
kind: Secret
metadata:
  name: argocd-secret
  namespace: argocd
stringData:
  server.secretkey: REPLACE_ME
---
apiVersion: v1
kind: Secret
metadata:
  name: n8n-secrets
  namespace: n8n
stringData:
  N8N_ENCRYPTION_KEY: REPLACE_N8N_ENCRYPTION_KEY
  DB_POSTGRESDB_PASSWORD: REPLACE_N8N_DB_PASSWORD
---
apiVersion: v1
kind: Secret
metadata:
  name: n8n-oauth2-proxy
  namespace: n8n
stringData:
  client-id: n8n
  client-secret: REPLACE_N8N_CLIENT_SECRET
  cookie-secret: REPLACE_N8N_COOKIE_SECRET
---
apiVersion: v1
kind: Secret
metadata:
  name: n8n-oidc-client
  namespace: keycloak
stringData:
  client-secret: REPLACE_N8N_CLIENT_SECRET
---
apiVersion: v1
kind: Secret
metadata:
  name: n8n-postgres
  namespace: n8n
stringData:
  postgres-password: REPLACE_N8N_DB_PASSWORD
  password: REPLACE_N8N_DB_PASSWORD
---
apiVersion: v1
kind: Secret
metadata:
  name: uptime-kuma-admin
  namespace: uptime-kuma
stringData:
  username: admin
  password: REPLACE_UPTIME_KUMA_ADMIN_PASSWORD
---
apiVersion: v1
kind: Secret
metadata:
  name: uptime-kuma-oauth2-proxy
  namespace: uptime-kuma
stringData:
  client-id: uptime-kuma
  client-secret: REPLACE_UPTIME_KUMA_CLIENT_SECRET
  cookie-secret: REPLACE_UPTIME_KUMA_COOKIE_SECRET
---
apiVersion: v1
kind: Secret
metadata:
  name: uptime-kuma-oidc-client
  namespace: keycloak
stringData:
  client-secret: REPLACE_UPTIME_KUMA_CLIENT_SECRET
"""

CREDENTIALS = {
    "AWS_ACCESS_KEY_ID": "abc123",
    "AWS_SECRET_ACCESS_KEY": "aws-secret-value",
    "AWS_HOSTED_ZONE_ID": "Z0123456789",
    "SOPS_AGE_KEY": "AGE-SECRET-KEY-1TESTIDENTITY",
}


class FakeSops:
    """In-memory stand-in for the sops encryption service.

    Ciphertext is the base64 plaintext behind a ``fake-sops:`` header, so
    tests can corrupt a file and observe decrypt failures.
    """

    header = "fake-sops:"

    def __init__(self, *, fail_encrypt: bool = False) -> None:
        self.fail_encrypt = fail_encrypt
        self.decrypted: list[Path] = []
        self.encrypted: list[Path] = []

    def decrypt(self, path: Path) -> str:
        self.decrypted.append(path)
        payload = path.read_text(encoding="utf-8")
        if not payload.startswith(self.header):
            msg = f"Could not decrypt {path}: no matching key"
            raise DecryptFailureError(msg)
        return base64.b64decode(payload[len(self.header):]).decode("utf-8")

    def encrypt(self, plaintext: str, target: Path) -> None:
        if self.fail_encrypt:
            msg = f"Could not encrypt {target}: no creation rule"
            raise EncryptFailureError(msg)
        self.encrypted.append(target)
        encoded = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        target.write_text(f"{self.header}{encoded}", encoding="utf-8")

    def seal(self, plaintext: str, target: Path) -> None:
        """Write a prior ciphertext without recording an encrypt call."""

        encoded = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        target.write_text(f"{self.header}{encoded}", encoding="utf-8")


@pytest.fixture
def credentials() -> dict[str, str]:
    """Return a complete credential environment."""
    return dict(CREDENTIALS)


@pytest.fixture
def fake_sops() -> FakeSops:
    return FakeSops()


@pytest.fixture
def overlays_root(tmp_path: Path) -> Path:
    """Create an overlays root holding a ``lab`` overlay with the example manifest."""
    root = tmp_path / "overlays"
    overlay_dir = root / "lab"
    overlay_dir.mkdir(parents=True)
    (overlay_dir / "secrets.example.yaml").write_text(EXAMPLE_MANIFEST, encoding="utf-8")
    return root


@pytest.fixture
def example_manifest() -> str:
    return EXAMPLE_MANIFEST
