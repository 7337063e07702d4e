"""
Vault HTTP Client
=================

The few Vault endpoints needed to bootstrap a cluster whose only unseal key
and root token are sealed to a PIV device.

Endpoints:
    PUT  /v1/sys/init                   1-of-1 secret share
    PUT  /v1/sys/unseal                 submit one unseal key
    POST /v1/auth/token/create-orphan   token without a parent
    POST /v1/auth/token/create/{role}   token from a token role

Retries:
    Connection errors and 5xx responses are retried up to max_retries
    times with backoff between min_retry_wait and max_retry_wait.

WARNING:
    - Responses carry unseal keys and tokens; they are never logged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Final, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from pivseal.core.config import VaultConfig
from pivseal.core.errors import VaultError

RETRY_STATUSES: Final[tuple[int, ...]] = (500, 502, 503, 504)
RETRY_METHODS: Final[frozenset[str]] = frozenset({"GET", "PUT", "POST"})


@dataclass(frozen=True, slots=True)
class SealStatus:
    """Response of sys/unseal."""
    sealed: bool
    threshold: int = 0
    shares: int = 0
    progress: int = 0
    version: str = ""
    cluster_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SealStatus:
        return cls(
            sealed=bool(data.get("sealed", True)),
            threshold=int(data.get("t", 0)),
            shares=int(data.get("n", 0)),
            progress=int(data.get("progress", 0)),
            version=str(data.get("version", "")),
            cluster_name=str(data.get("cluster_name", "")),
        )


@dataclass(frozen=True, slots=True)
class TokenAuth:
    """Token issued by auth/token/create*."""
    client_token: str = field(repr=False)
    lease_id: str = ""
    lease_duration: int = 0
    policies: tuple[str, ...] = ()


class VaultClient:
    """
    Thin Vault API client over a requests Session.

    Usage:
        client = VaultClient(VaultConfig(address="http://127.0.0.1:8200"), logger=logger)

        init = client.init()            # {"keys": [...], "root_token": ...}
        status = client.unseal(init["keys"][0])
        auth = client.create_token(init["root_token"], ttl="1h")
    """

    __slots__ = ("_config", "_session", "_logger")

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config or VaultConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._session = session or self._build_session(self._config)

    @staticmethod
    def _build_session(config: VaultConfig) -> requests.Session:
        retry = Retry(
            total=config.max_retries,
            connect=config.max_retries,
            read=config.max_retries,
            status=config.max_retries,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=RETRY_METHODS,
            backoff_factor=config.min_retry_wait,
            backoff_max=config.max_retry_wait,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)

        session = requests.Session()
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @property
    def address(self) -> str:
        return self._config.address

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> dict[str, Any]:
        url = f"{self._config.address.rstrip('/')}/v1/{path}"
        headers = {"X-Vault-Request": "true"}
        if token:
            headers["X-Vault-Token"] = token

        try:
            response = self._session.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=self._config.timeout,
            )
        except requests.RequestException as e:
            raise VaultError(f"Vault request {method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise VaultError(
                f"Vault request {method} {path} failed with HTTP {response.status_code}: "
                f"{self._error_detail(response)}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise VaultError(f"Vault returned invalid JSON for {path}") from e

        if not isinstance(data, dict):
            raise VaultError(f"Vault returned an unexpected response for {path}")
        return data

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            errors = response.json().get("errors")
        except (ValueError, AttributeError):
            errors = None
        if errors:
            return "; ".join(str(e) for e in errors)
        return response.reason or "no detail"

    def init(self, secret_shares: int = 1, secret_threshold: int = 1) -> dict[str, Any]:
        """
        Initialize a new Vault.

        Returns:
            The raw init response (keys, keys_base64, root_token)

        Raises:
            VaultError: If the request fails or the response lacks keys
        """
        self._logger.info(
            "Initializing vault with %d-of-%d secret endpoint=%s",
            secret_threshold, secret_shares, self._config.address,
        )
        data = self._request(
            "PUT",
            "sys/init",
            {"secret_shares": secret_shares, "secret_threshold": secret_threshold},
        )
        if not data.get("keys") or not data.get("root_token"):
            raise VaultError("Vault init response is missing keys or root token")
        return data

    def unseal(self, key: str) -> SealStatus:
        """Submit one unseal key and return the resulting seal status."""
        self._logger.info("Unsealing vault endpoint=%s", self._config.address)
        return SealStatus.from_dict(self._request("PUT", "sys/unseal", {"key": key}))

    def create_token(
        self,
        token: str,
        role: Optional[str] = None,
        policies: Sequence[str] = (),
        ttl: Optional[str] = None,
    ) -> TokenAuth:
        """
        Create a token using an existing (root) token.

        Without a role an orphan token is created; with one, the role's
        create endpoint is used.
        """
        body: dict[str, Any] = {"no_parent": True}
        if policies:
            body["policies"] = list(policies)
        if ttl:
            body["ttl"] = ttl

        if role:
            self._logger.info("Requesting token with role=%s", role)
            data = self._request("POST", f"auth/token/create/{role}", body, token=token)
        else:
            self._logger.info("Requesting orphan token")
            data = self._request("POST", "auth/token/create-orphan", body, token=token)

        auth = data.get("auth") or {}
        if not auth.get("client_token"):
            raise VaultError("Vault token response is missing auth.client_token")

        return TokenAuth(
            client_token=auth["client_token"],
            lease_id=str(data.get("lease_id") or ""),
            lease_duration=int(auth.get("lease_duration") or 0),
            policies=tuple(auth.get("policies") or ()),
        )

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> VaultClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
