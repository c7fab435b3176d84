# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Credential acquisition for servers that require authorization.

The engine only needs three operations from an :class:`AuthFlow`:
``load`` (reuse a stored credential), ``authenticate`` (obtain a new one) and
``clear_storage`` (forget it).  Storage is delegated to a
:class:`CredentialStore` so hosts decide where tokens live.

Flows provided here:

* :class:`StaticTokenAuth` – a pre-issued bearer token.
* :class:`ClientCredentialsAuth` – OAuth 2.1 ``client_credentials`` grant for
  headless machine-to-machine use.
* :class:`DeviceAuthorizationAuth` – RFC 8628 device authorization for
  interactive CLIs; the user approves the request in a browser.

The OAuth flows locate the authorization server from the protected-resource
metadata returned by discovery and read its RFC 8414 metadata, falling back to
the ``/oauth2/token`` and ``/oauth2/device/auth`` paths served by the openmcp
authorization server.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass
import json
from pathlib import Path
import time
from typing import Any, Protocol, runtime_checkable

import anyio
import httpx
from mcp.shared.auth import OAuthToken
from pydantic import ValidationError

from ..errors import AuthError
from ..utils import get_logger, maybe_await_with_args
from .transports import Discovery


logger = get_logger("mcpconnect.auth")

DEFAULT_EXPIRY_LEEWAY = 30.0
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
AUTHORIZATION_SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"

HttpClientFactory = Callable[..., httpx.AsyncClient]
DevicePrompt = Callable[[str, str], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class Credential:
    """Opaque bearer credential plus an expiry hint."""

    token: str
    token_type: str = "Bearer"
    expires_at: float | None = None
    refresh_token: str | None = None
    scope: str | None = None

    def __repr__(self) -> str:
        return f"Credential(token_type={self.token_type!r}, expires_at={self.expires_at!r}, scope={self.scope!r})"

    def is_expired(self, now: float | None = None, *, leeway: float = DEFAULT_EXPIRY_LEEWAY) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current + leeway >= self.expires_at

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.token}"

    @classmethod
    def from_token(cls, token: OAuthToken, *, now: float | None = None) -> "Credential":
        issued = time.time() if now is None else now
        return cls(
            token=token.access_token,
            token_type=token.token_type,
            expires_at=issued + token.expires_in if token.expires_in is not None else None,
            refresh_token=token.refresh_token,
            scope=token.scope,
        )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@runtime_checkable
class CredentialStore(Protocol):
    def get(self, key: str) -> Credential | None: ...

    def set(self, key: str, credential: Credential) -> None: ...

    def clear(self, key: str | None = None) -> None: ...


class InMemoryCredentialStore:
    """Process-local store keyed by endpoint URL."""

    def __init__(self) -> None:
        self._items: dict[str, Credential] = {}

    def get(self, key: str) -> Credential | None:
        return self._items.get(key)

    def set(self, key: str, credential: Credential) -> None:
        self._items[key] = credential

    def clear(self, key: str | None = None) -> None:
        if key is None:
            self._items.clear()
        else:
            self._items.pop(key, None)


class FileCredentialStore:
    """JSON file store keyed by endpoint URL.

    The file is rewritten on every change and created with ``0600``
    permissions.  A corrupt file is treated as empty.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, dict[str, Any]]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Mapping[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.touch(mode=0o600, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def get(self, key: str) -> Credential | None:
        entry = self._read().get(key)
        if not isinstance(entry, dict):
            return None
        try:
            return Credential(**entry)
        except TypeError:
            logger.warning("Ignoring malformed credential entry for %s", key)
            return None

    def set(self, key: str, credential: Credential) -> None:
        data = self._read()
        data[key] = asdict(credential)
        self._write(data)

    def clear(self, key: str | None = None) -> None:
        if key is None:
            self._path.unlink(missing_ok=True)
            return
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@runtime_checkable
class AuthFlow(Protocol):
    def load(self, url: str) -> Credential | None:
        """Return a usable stored credential for *url*, if any."""

    async def authenticate(self, url: str, discovery: Discovery) -> Credential:
        """Obtain (and store) a credential; raise :class:`AuthError` on failure."""

    def clear_storage(self, url: str | None = None) -> None:
        """Forget stored credentials.  Never raises."""


class _StoredFlow:
    """Storage plumbing shared by every flow."""

    def __init__(self, store: CredentialStore | None = None) -> None:
        self._store = store if store is not None else InMemoryCredentialStore()

    @property
    def store(self) -> CredentialStore:
        return self._store

    def load(self, url: str) -> Credential | None:
        credential = self._store.get(url)
        if credential is None or credential.is_expired():
            return None
        return credential

    def clear_storage(self, url: str | None = None) -> None:
        try:
            self._store.clear(url)
        except Exception as exc:  # noqa: BLE001 - clearing must always succeed
            logger.warning("Credential store clear failed: %s", exc)

    def _remember(self, url: str, credential: Credential) -> Credential:
        if credential.is_expired(leeway=0):
            raise AuthError("Authorization server issued an already expired credential")
        self._store.set(url, credential)
        return credential


class StaticTokenAuth(_StoredFlow):
    """Use a bearer token obtained out of band."""

    def __init__(self, token: str, *, expires_at: float | None = None, store: CredentialStore | None = None) -> None:
        super().__init__(store)
        if not token:
            raise ValueError("token must not be empty")
        self._credential = Credential(token=token, expires_at=expires_at)

    async def authenticate(self, url: str, discovery: Discovery) -> Credential:
        if self._credential.is_expired():
            raise AuthError("Configured access token has expired")
        return self._remember(url, self._credential)


class _OAuthFlow(_StoredFlow):
    """Token endpoint helpers shared by the OAuth grants."""

    def __init__(
        self,
        client_id: str,
        *,
        scope: str | None = None,
        issuer: str | None = None,
        token_url: str | None = None,
        timeout: float = 30.0,
        store: CredentialStore | None = None,
        httpx_client_factory: HttpClientFactory = httpx.AsyncClient,
    ) -> None:
        super().__init__(store)
        self.client_id = client_id
        self.scope = scope
        self._issuer = issuer
        self._token_url = token_url
        self._timeout = timeout
        self._client_factory = httpx_client_factory

    def _client(self) -> httpx.AsyncClient:
        return self._client_factory(timeout=self._timeout)

    def _resolve_issuer(self, discovery: Discovery) -> str:
        issuer = self._issuer or next(iter(discovery.authorization_servers), None)
        if not issuer:
            raise AuthError("No authorization server configured or advertised by the resource")
        return issuer.rstrip("/")

    async def _server_metadata(self, client: httpx.AsyncClient, issuer: str) -> dict[str, Any]:
        try:
            response = await client.get(f"{issuer}{AUTHORIZATION_SERVER_METADATA_PATH}")
        except httpx.HTTPError as exc:
            raise AuthError(f"Failed to reach authorization server at {issuer}: {exc}", cause=exc) from exc
        if response.status_code != 200:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    async def _token_endpoint(self, client: httpx.AsyncClient, discovery: Discovery) -> str:
        if self._token_url:
            return self._token_url
        issuer = self._resolve_issuer(discovery)
        metadata = await self._server_metadata(client, issuer)
        return str(metadata.get("token_endpoint") or f"{issuer}/oauth2/token")

    def _scope(self, discovery: Discovery) -> str | None:
        if self.scope is not None:
            return self.scope
        return " ".join(discovery.scopes) or None

    async def _post_token(
        self,
        client: httpx.AsyncClient,
        token_url: str,
        data: dict[str, str],
        *,
        auth: httpx.Auth | None = None,
    ) -> httpx.Response:
        try:
            return await client.post(token_url, data=data, auth=auth)  # type: ignore[arg-type]
        except httpx.HTTPError as exc:
            raise AuthError(f"Failed to reach token endpoint at {token_url}: {exc}", cause=exc) from exc

    @staticmethod
    def _parse_token(response: httpx.Response) -> Credential:
        try:
            token = OAuthToken.model_validate_json(response.content)
        except ValidationError as exc:
            raise AuthError("Token endpoint returned a malformed token response", cause=exc) from exc
        return Credential.from_token(token)

    @staticmethod
    def _describe_error(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return f"HTTP {response.status_code} {response.text}".strip()
        if isinstance(payload, dict) and "error" in payload:
            description = payload.get("error_description")
            return f"{payload['error']}: {description}" if description else str(payload["error"])
        return f"HTTP {response.status_code}"

    async def _try_refresh(self, client: httpx.AsyncClient, url: str, discovery: Discovery) -> Credential | None:
        stored = self._store.get(url)
        if stored is None or stored.refresh_token is None or not stored.is_expired():
            return None
        token_url = await self._token_endpoint(client, discovery)
        response = await self._post_token(
            client,
            token_url,
            {"grant_type": "refresh_token", "refresh_token": stored.refresh_token, "client_id": self.client_id},
            auth=self._client_auth(),
        )
        if response.status_code != 200:
            logger.info("Refresh token rejected (%s); running full grant", self._describe_error(response))
            return None
        refreshed = self._parse_token(response)
        if refreshed.refresh_token is None:
            refreshed = Credential(
                token=refreshed.token,
                token_type=refreshed.token_type,
                expires_at=refreshed.expires_at,
                refresh_token=stored.refresh_token,
                scope=refreshed.scope,
            )
        return refreshed

    def _client_auth(self) -> httpx.Auth | None:
        return None

    async def authenticate(self, url: str, discovery: Discovery) -> Credential:
        async with self._client() as client:
            credential = await self._try_refresh(client, url, discovery)
            if credential is None:
                credential = await self._grant(client, url, discovery)
        logger.info("Obtained credential for %s", url)
        return self._remember(url, credential)

    async def _grant(self, client: httpx.AsyncClient, url: str, discovery: Discovery) -> Credential:
        raise NotImplementedError


class ClientCredentialsAuth(_OAuthFlow):
    """OAuth 2.1 ``client_credentials`` grant with HTTP Basic client authentication."""

    def __init__(self, client_id: str, client_secret: str, **kwargs: Any) -> None:
        super().__init__(client_id, **kwargs)
        if not client_secret:
            raise ValueError("client_secret must not be empty")
        self._client_secret = client_secret

    def _client_auth(self) -> httpx.Auth:
        return httpx.BasicAuth(self.client_id, self._client_secret)

    async def _grant(self, client: httpx.AsyncClient, url: str, discovery: Discovery) -> Credential:
        token_url = await self._token_endpoint(client, discovery)
        data = {"grant_type": "client_credentials", "resource": url}
        scope = self._scope(discovery)
        if scope:
            data["scope"] = scope

        response = await self._post_token(client, token_url, data, auth=self._client_auth())
        if response.status_code != 200:
            raise AuthError(f"Token request failed: {self._describe_error(response)}")
        return self._parse_token(response)


class DeviceAuthorizationAuth(_OAuthFlow):
    """RFC 8628 device authorization grant.

    ``prompt(user_code, verification_uri)`` is called once the device code is
    issued so the host can show the user where to approve the request.  The
    flow then polls the token endpoint, honouring ``authorization_pending`` and
    ``slow_down``.
    """

    def __init__(
        self,
        client_id: str,
        prompt: DevicePrompt,
        *,
        device_authorization_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(client_id, **kwargs)
        self._prompt = prompt
        self._device_url = device_authorization_url

    async def _device_endpoint(self, client: httpx.AsyncClient, discovery: Discovery) -> str:
        if self._device_url:
            return self._device_url
        issuer = self._resolve_issuer(discovery)
        metadata = await self._server_metadata(client, issuer)
        return str(metadata.get("device_authorization_endpoint") or f"{issuer}/oauth2/device/auth")

    async def _grant(self, client: httpx.AsyncClient, url: str, discovery: Discovery) -> Credential:
        device_url = await self._device_endpoint(client, discovery)
        token_url = await self._token_endpoint(client, discovery)

        data = {"client_id": self.client_id, "resource": url}
        scope = self._scope(discovery)
        if scope:
            data["scope"] = scope
        response = await self._post_token(client, device_url, data)
        if response.status_code != 200:
            raise AuthError(f"Device authorization failed: {self._describe_error(response)}")

        try:
            grant = response.json()
            device_code = grant["device_code"]
            user_code = grant["user_code"]
            verification_uri = grant.get("verification_uri_complete") or grant["verification_uri"]
            interval = float(grant.get("interval", 5))
            expires_in = float(grant.get("expires_in", 900))
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError("Device authorization response is missing required fields", cause=exc) from exc

        await maybe_await_with_args(self._prompt, user_code, verification_uri)

        deadline = anyio.current_time() + expires_in
        poll = {"grant_type": DEVICE_CODE_GRANT, "device_code": device_code, "client_id": self.client_id}
        while anyio.current_time() < deadline:
            await anyio.sleep(interval)
            token_response = await self._post_token(client, token_url, poll)
            if token_response.status_code == 200:
                return self._parse_token(token_response)

            try:
                error = token_response.json().get("error")
            except (ValueError, AttributeError):
                error = None
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += 5
                continue
            raise AuthError(f"Device flow failed: {self._describe_error(token_response)}")

        raise AuthError("Device code expired before it was approved")


__all__ = [
    "AuthFlow",
    "ClientCredentialsAuth",
    "Credential",
    "CredentialStore",
    "DeviceAuthorizationAuth",
    "FileCredentialStore",
    "InMemoryCredentialStore",
    "StaticTokenAuth",
]
