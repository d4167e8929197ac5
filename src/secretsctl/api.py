"""HTTP client for the secrets API and the CLI version endpoint."""

import logging
from typing import Dict, Iterable, Optional

import httpx

from . import __version__
from .config import VERSION_CHECK_URL
from .errors import APIError, ConfigurationError, VersionCheckError

logger = logging.getLogger(__name__)

USER_AGENT = f"secretsctl/{__version__}"


def _error_message(response: httpx.Response) -> str:
    """Pull the server's error messages out of a failed response."""
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        messages = data.get("messages")
        if isinstance(messages, list) and messages:
            return "\n".join(str(m) for m in messages)
        if data.get("message"):
            return str(data["message"])

    return f"API returned status {response.status_code}"


class SecretsAPI:
    """Thin wrapper around the secrets service REST API."""

    def __init__(
        self,
        host: str,
        token: Optional[str],
        timeout: Optional[float] = 10.0,
        verify_tls: bool = True,
        transport: httpx.BaseTransport = None,
    ):
        self.host = host.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.transport = transport

    def get_headers(self) -> Dict[str, str]:
        if not self.token:
            raise ConfigurationError(
                "You must provide a token. Use --token or 'secretsctl configure set token=<token>'"
            )
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _request(self, method: str, path: str, params: dict = None, json: dict = None) -> dict:
        headers = self.get_headers()
        url = f"{self.host}{path}"
        logger.debug("%s %s", method, url)

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_tls, transport=self.transport) as client:
                response = client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise APIError(f"Request to {self.host} timed out") from e
        except httpx.HTTPError as e:
            raise APIError(f"Unable to reach {self.host}: {e}") from e

        if response.status_code >= 400:
            raise APIError(_error_message(response), status_code=response.status_code)

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON response from {self.host}") from e

        if not isinstance(data, dict):
            raise APIError(f"Invalid response from {self.host}: expected an object")
        return data

    def _secrets_from(self, data: dict) -> Dict[str, dict]:
        secrets = data.get("secrets", {})
        if not isinstance(secrets, dict) or not all(isinstance(s, dict) for s in secrets.values()):
            raise APIError(f"Invalid response from {self.host}: malformed secrets")
        return secrets

    def get_me(self) -> dict:
        return self._request("GET", "/v3/me")

    def list_secrets(self, project: str, config: str) -> Dict[str, dict]:
        """All secrets of a config, keyed by name, each with 'raw' and 'computed' values."""
        data = self._request(
            "GET",
            "/v3/configs/config/secrets",
            params={"project": project, "config": config},
        )
        return self._secrets_from(data)

    def set_secrets(self, project: str, config: str, changes: Dict[str, Optional[str]]) -> Dict[str, dict]:
        """Create, update or (with a None value) delete secrets."""
        data = self._request(
            "POST",
            "/v3/configs/config/secrets",
            json={"project": project, "config": config, "secrets": changes},
        )
        return self._secrets_from(data)

    def delete_secrets(self, project: str, config: str, names: Iterable[str]) -> Dict[str, dict]:
        return self.set_secrets(project, config, {name: None for name in names})

    def download_secrets(self, project: str, config: str) -> Dict[str, str]:
        """Computed secret values as a flat name -> value mapping."""
        return self._request(
            "GET",
            "/v3/configs/config/secrets/download",
            params={"project": project, "config": config, "format": "json"},
        )


def get_latest_cli_version(
    url: str = VERSION_CHECK_URL,
    timeout: Optional[float] = 10.0,
    verify_tls: bool = True,
    transport: httpx.BaseTransport = None,
) -> str:
    """Ask the version endpoint for the newest released CLI version."""
    try:
        with httpx.Client(timeout=timeout, verify=verify_tls, transport=transport) as client:
            response = client.get(url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise VersionCheckError(f"Unable to fetch latest version: {e}") from e

    version = data.get("version") if isinstance(data, dict) else None
    if not version:
        raise VersionCheckError("Version endpoint returned no version")
    return str(version)
