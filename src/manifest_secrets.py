"""ODB-managed secrets: extraction, path generation and storage.

The service adapter may return plaintext secrets alongside a manifest that
references them as ``((odb_secret:<name>))``. When secure manifests are
enabled, the broker stores each referenced secret under
``/odb/<service-offering-id>/<deployment>/<name>`` and rewrites the manifest
to reference the stored path instead, so no plaintext reaches the director.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

ODB_SECRET_PREFIX = 'odb_secret'

_ODB_REF = re.compile(r'\(\(' + ODB_SECRET_PREFIX + r':([^()\s]+)\)\)')


class SecretStoreError(Exception):
    """Writing secrets to the secret store failed."""


@dataclass(frozen=True)
class ManifestSecret:
    """A secret extracted from a generated manifest.

    Attributes:
        name: Secret name as referenced in the manifest
        path: Secret store path the manifest will reference
        value: Secret value (string or mapping)
    """
    name: str
    path: str
    value: Any


class BulkSetter(Protocol):
    """Persists a batch of secrets."""

    def bulk_set(self, secrets: list[ManifestSecret]) -> None:
        """Write all secrets, raising on the first failure."""


@dataclass
class ODBSecrets:
    """Generates secret store paths and rewrites manifest references."""
    service_offering_id: str

    def secret_path(self, deployment_name: str, name: str) -> str:
        return f'/odb/{self.service_offering_id}/{deployment_name}/{name}'

    def generate_secret_paths(
        self,
        deployment_name: str,
        manifest: str,
        secrets_map: Optional[dict[str, Any]],
    ) -> list[ManifestSecret]:
        """Build ManifestSecrets for the secrets the manifest actually references.

        Secrets in the map with no matching reference are dropped.
        """
        if not secrets_map:
            return []

        referenced = []
        for name in _ODB_REF.findall(manifest):
            if name in secrets_map and name not in referenced:
                referenced.append(name)

        return [
            ManifestSecret(
                name=name,
                path=self.secret_path(deployment_name, name),
                value=secrets_map[name],
            )
            for name in referenced
        ]

    def replace_odb_refs(self, manifest: str, secrets: list[ManifestSecret]) -> str:
        """Replace every ((odb_secret:<name>)) with ((<path>))."""
        for secret in secrets:
            manifest = manifest.replace(
                f'(({ODB_SECRET_PREFIX}:{secret.name}))',
                f'(({secret.path}))',
            )
        return manifest


def fetch_uaa_token(
    uaa_url: str,
    client_id: str,
    client_secret: str,
    insecure: bool = False,
    timeout: int = 30,
) -> str:
    """Obtain a client-credentials access token from UAA.

    Raises:
        SecretStoreError: If UAA rejects the client or is unreachable
    """
    try:
        resp = requests.post(
            f"{uaa_url.rstrip('/')}/oauth/token",
            data={'grant_type': 'client_credentials'},
            auth=(client_id, client_secret),
            headers={'Accept': 'application/json'},
            verify=not insecure,
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        raise SecretStoreError(f"error obtaining UAA token from {uaa_url}: {e}") from e

    if resp.status_code != 200:
        raise SecretStoreError(f"UAA rejected client '{client_id}': status {resp.status_code}")
    try:
        return resp.json()['access_token']
    except (ValueError, KeyError, TypeError) as e:
        raise SecretStoreError(f"UAA returned no access token for client '{client_id}'") from e


class CredHubBulkSetter:
    """Writes secrets to CredHub over its data API.

    The UAA token is fetched on first use, and fetched again once whenever
    CredHub answers 401.
    """

    def __init__(
        self,
        url: str,
        uaa_url: str,
        client_id: str,
        client_secret: str,
        insecure: bool = False,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize CredHub writer.

        Args:
            url: CredHub URL (e.g., https://credhub:8844)
            uaa_url: UAA URL issuing tokens for the broker's CredHub client
            client_id: UAA client ID
            client_secret: UAA client secret
            insecure: Skip TLS verification
            timeout: Per-request timeout in seconds
            session: Preconfigured session (tests)
        """
        self.url = url.rstrip('/')
        self.uaa_url = uaa_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.insecure = insecure
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        if insecure:
            self.session.verify = False

    def _refresh_token(self) -> None:
        self._token = fetch_uaa_token(
            self.uaa_url, self.client_id, self.client_secret,
            insecure=self.insecure, timeout=self.timeout,
        )
        self.session.headers['Authorization'] = f'Bearer {self._token}'

    def bulk_set(self, secrets: list[ManifestSecret]) -> None:
        if secrets and self._token is None:
            self._refresh_token()
        for secret in secrets:
            self._set(secret)
        logger.info(f"Stored {len(secrets)} ODB-managed secrets")

    def _put(self, secret: ManifestSecret, body: dict) -> requests.Response:
        try:
            return self.session.put(f'{self.url}/api/v1/data', json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SecretStoreError(f"error storing secret '{secret.path}': {e}") from e

    def _set(self, secret: ManifestSecret) -> None:
        secret_type = 'json' if isinstance(secret.value, dict) else 'value'
        body = {
            'name': secret.path,
            'type': secret_type,
            'value': secret.value,
        }
        resp = self._put(secret, body)
        if resp.status_code == 401:
            logger.info("CredHub rejected the UAA token, fetching a new one")
            self._refresh_token()
            resp = self._put(secret, body)

        if resp.status_code != 200:
            raise SecretStoreError(
                f"error storing secret '{secret.path}': unexpected status {resp.status_code}"
            )
