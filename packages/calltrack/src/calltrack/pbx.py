"""PBX call-detail record fetcher.

Retrieves CDRs for a time window (and optionally one destination) from the
PBX HTTP API. Authentication is an httpx auth flow: a static bearer key,
HTTP basic auth, or a username/password exchange for a cached token.

The fetcher fails open. A PBX outage must not crash the polling loop, so
every transport, HTTP or auth failure is logged and turned into an empty
result; the engine retries on its next pass.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from pydantic import ValidationError as PydanticValidationError

from calltrack.config import ConfigurationError, env_bool, env_float
from calltrack.errors import UpstreamUnavailable
from calltrack.schemas import CallRecord

logger = logging.getLogger("call-tracking-pbx")

# Response keys that may hold the record list, in order of preference
RECORD_KEYS = ("records", "logs", "cdrs", "data")

# Statuses meaning the PBX did not accept our credentials
AUTH_REJECTED = (401, 403)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class PBXConfig:
    """PBX connection configuration."""

    cdr_url: str
    auth_mode: str = "basic"  # 'bearer', 'basic' or 'token'
    api_key: str = ""
    username: str = ""
    password: str = ""
    token_url: str = ""
    verify_tls: bool = True
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "PBXConfig":
        """Load PBX config from environment variables."""
        cdr_url = os.getenv("PBX_CDR_URL", "")
        if not cdr_url and os.getenv("PBXACT_API_URL"):
            cdr_url = os.getenv("PBXACT_API_URL", "").rstrip("/") + "/call-logs"

        config = cls(
            cdr_url=cdr_url,
            auth_mode=os.getenv("PBX_AUTH_MODE", "basic").strip().lower(),
            api_key=os.getenv("PBX_API_KEY", os.getenv("PBXACT_API_KEY", "")),
            username=os.getenv("PBX_USER", ""),
            password=os.getenv("PBX_PASS", ""),
            token_url=os.getenv("PBX_TOKEN_URL", ""),
            verify_tls=env_bool("PBX_VERIFY_TLS", True),
            timeout_seconds=env_float("PBX_TIMEOUT_SECONDS", 15.0),
        )

        if not config.cdr_url:
            logger.warning("PBX_CDR_URL not set - no calls will be matched")
        if not config.verify_tls:
            logger.warning("PBX TLS verification disabled")

        return config

    def is_configured(self) -> bool:
        """Check if the PBX endpoint and credentials for the auth mode are set."""
        if not self.cdr_url:
            return False
        if self.auth_mode == "bearer":
            return bool(self.api_key)
        if self.auth_mode == "basic":
            return bool(self.username and self.password)
        if self.auth_mode == "token":
            return bool(self.token_url and self.username and self.password)
        return False


# =============================================================================
# Auth Flows
# =============================================================================


class StaticKeyAuth(httpx.Auth):
    """Static API key sent as a bearer token."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Bearer {self.api_key}"
        yield request


class TokenExchangeAuth(httpx.Auth):
    """Username/password exchanged for a bearer token.

    The token is cached across requests. When the PBX rejects it, one fresh
    exchange is made and the request is replayed once.
    """

    requires_response_body = True

    def __init__(self, token_url: str, username: str, password: str):
        self.token_url = token_url
        self.username = username
        self.password = password
        self._token: str | None = None
        self.exchanges = 0  # Number of token requests made

    def auth_flow(self, request: httpx.Request):
        if self._token is None:
            self._token = self._read_token((yield self._token_request()))

        request.headers["Authorization"] = f"Bearer {self._token}"
        response = yield request

        if response.status_code in AUTH_REJECTED:
            logger.info("PBX rejected credentials, refreshing token")
            self._token = self._read_token((yield self._token_request()))
            request.headers["Authorization"] = f"Bearer {self._token}"
            yield request

    def _token_request(self) -> httpx.Request:
        self.exchanges += 1
        return httpx.Request(
            "POST",
            self.token_url,
            json={"username": self.username, "password": self.password},
        )

    def _read_token(self, response: httpx.Response) -> str:
        """Extract the token from an exchange response.

        Raises:
            UpstreamUnavailable: If the exchange failed or returned no token.
        """
        self._token = None
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                f"PBX token exchange rejected: HTTP {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("PBX token exchange returned a non-JSON body") from e

        token = None
        if isinstance(body, dict):
            token = body.get("access_token") or body.get("token")
        if not token:
            raise UpstreamUnavailable("PBX token exchange returned no token")
        return token


def build_auth(config: PBXConfig) -> httpx.Auth:
    """Create the auth flow named by the config."""
    if config.auth_mode == "bearer":
        return StaticKeyAuth(config.api_key)
    if config.auth_mode == "basic":
        return httpx.BasicAuth(config.username, config.password)
    if config.auth_mode == "token":
        return TokenExchangeAuth(config.token_url, config.username, config.password)
    raise ConfigurationError(
        f"Unknown PBX_AUTH_MODE: {config.auth_mode!r}\n"
        "Expected one of: bearer, basic, token"
    )


# =============================================================================
# Fetcher
# =============================================================================


def _format_time(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2025-01-01T10:00:00.000Z."""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_records(payload) -> list[CallRecord]:
    """Turn a PBX response body into CallRecords, skipping malformed rows."""
    rows = payload
    if isinstance(payload, dict):
        rows = next(
            (payload[key] for key in RECORD_KEYS if isinstance(payload.get(key), list)),
            [],
        )
    if not isinstance(rows, list):
        raise UpstreamUnavailable(
            f"Unexpected PBX response shape: {type(payload).__name__}"
        )

    records: list[CallRecord] = []
    for row in rows:
        try:
            records.append(CallRecord.model_validate(row))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed CDR {row!r}: {e.error_count()} error(s)")
    return records


class PBXLogFetcher:
    """Fetches call-detail records from the PBX."""

    def __init__(
        self,
        config: PBXConfig | None = None,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the fetcher.

        Args:
            config: PBX configuration. Loads from environment if not provided.
            auth: httpx auth flow. Built from the config if not provided.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config or PBXConfig.from_env()
        self.auth = auth or build_auth(self.config)
        self._transport = transport
        self.last_error: str | None = None

    async def fetch_logs(
        self,
        window_start: datetime,
        window_end: datetime,
        destination: str | None = None,
    ) -> list[CallRecord]:
        """Fetch CDRs that started inside the window.

        Never raises: on failure the error is logged, kept in last_error,
        and an empty list is returned.
        """
        self.last_error = None

        if not self.config.is_configured():
            self.last_error = (
                "PBX not configured. Check PBX_CDR_URL and the credentials "
                f"for PBX_AUTH_MODE={self.config.auth_mode}"
            )
            logger.error(self.last_error)
            return []

        params = {
            "date_from": _format_time(window_start),
            "date_to": _format_time(window_end),
        }
        if destination:
            params["dst"] = destination

        try:
            async with httpx.AsyncClient(
                verify=self.config.verify_tls,
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            ) as client:
                payload = await self._get(client, params)
            records = parse_records(payload)
        except UpstreamUnavailable as e:
            self.last_error = str(e)
            logger.error(f"PBX CDR error: {e}")
            return []

        logger.info(
            f"Fetched {len(records)} CDR(s) for {params['date_from']}..{params['date_to']}"
            + (f" dst={destination}" if destination else "")
        )
        return records

    async def _get(self, client: httpx.AsyncClient, params: dict[str, str]):
        """GET the CDR endpoint and decode the JSON body."""
        try:
            response = await client.get(
                self.config.cdr_url, params=params, auth=self.auth
            )
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"PBX request timed out: {e!s}") from e
        except httpx.InvalidURL as e:
            raise UpstreamUnavailable(f"Invalid PBX URL: {e!s}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"PBX request failed: {e!s}") from e

        if response.status_code in AUTH_REJECTED:
            raise UpstreamUnavailable(
                f"PBX rejected credentials: HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            raise UpstreamUnavailable(f"PBX returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable("PBX returned a non-JSON body") from e
