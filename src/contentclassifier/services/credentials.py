"""Resolution of the credential formats accepted for the Bedrock backend.

Three inputs are supported:

* standard IAM fields (access key, secret key, optional session token),
* an exchange key (``bedrock-api-key-`` followed by a base64 encoded,
  pre-signed URL which returns temporary credentials when fetched),
* a literal key string: a JSON object, ``key:secret[:token]`` or the
  base64 encoding of the latter.

Exchanged credentials are cached on the resolver until five minutes before
they expire.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Sequence
from urllib.parse import quote

import requests

from contentclassifier.config import BedrockConfig
from contentclassifier.errors import (
    InvalidCredentialFormat,
    KeyExchangeFailed,
    KeyExchangeInvalid,
    MissingCredentials,
)

__all__ = [
    "Credential",
    "CredentialResolver",
    "EXCHANGE_KEY_PREFIX",
    "ExchangeStrategy",
    "parse_literal_credentials",
]

logger = logging.getLogger(__name__)

EXCHANGE_KEY_PREFIX = "bedrock-api-key-"
EXCHANGE_TIMEOUT = 10.0
EXPIRY_MARGIN = timedelta(minutes=5)
DEFAULT_VALIDITY = timedelta(hours=1)
MIN_ACCESS_KEY_LENGTH = 16
MIN_SECRET_LENGTH = 11

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")

_FIELD_ALIASES = {
    "access_key_id": ("AccessKeyId", "accessKeyId", "access_key_id"),
    "secret_access_key": ("SecretAccessKey", "secretAccessKey", "secret_access_key"),
    "session_token": ("SessionToken", "sessionToken", "session_token"),
    "expiration": ("Expiration", "expiration"),
}


@dataclass(frozen=True)
class Credential:
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None
    expiration: datetime | None = None


@dataclass(frozen=True)
class ExchangeStrategy:
    """One route to the pre-signed credentials endpoint."""

    name: str
    build_url: Callable[[str], str]


DEFAULT_EXCHANGE_STRATEGIES: tuple[ExchangeStrategy, ...] = (
    ExchangeStrategy("CorsProxy", lambda target: f"https://corsproxy.io/?{quote(target, safe='')}"),
    ExchangeStrategy(
        "AllOrigins", lambda target: f"https://api.allorigins.win/raw?url={quote(target, safe='')}"
    ),
    ExchangeStrategy("Direct", lambda target: target),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first_field(data: Mapping[str, Any], name: str) -> Any:
    for alias in _FIELD_ALIASES[name]:
        value = data.get(alias)
        if value:
            return value
    return None


def _parse_expiration(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        # epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as exc:
            raise KeyExchangeInvalid(f"Unrecognised expiration timestamp: {value!r}") from exc

    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise KeyExchangeInvalid(f"Unrecognised expiration timestamp: {value!r}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_literal_credentials(api_key: str) -> Credential:
    """Parse a literal key string into a :class:`Credential`.

    Raises :class:`InvalidCredentialFormat` when no supported layout matches.
    """

    clean = api_key.strip()

    if clean.startswith("{"):
        try:
            payload = json.loads(clean)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict) and payload.get("accessKeyId") and payload.get("secretAccessKey"):
            return Credential(
                access_key_id=str(payload["accessKeyId"]).strip(),
                secret_access_key=str(payload["secretAccessKey"]).strip(),
                session_token=str(payload["sessionToken"]).strip() if payload.get("sessionToken") else None,
            )

    decoded = clean
    if _BASE64_RE.match(clean):
        try:
            candidate = base64.b64decode(clean, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            candidate = ""
        if ":" in candidate:
            decoded = candidate

    if ":" in decoded:
        access_key_id, secret_access_key, *rest = (part.strip() for part in decoded.split(":"))
        session_token = ":".join(rest).strip() or None
        if len(access_key_id) >= MIN_ACCESS_KEY_LENGTH and len(secret_access_key) >= MIN_SECRET_LENGTH:
            return Credential(access_key_id, secret_access_key, session_token)

    raise InvalidCredentialFormat(
        "Invalid API key format. Exchange keys must start with "
        f"'{EXCHANGE_KEY_PREFIX}' and contain no spaces; manual keys use 'AccessKey:SecretKey'."
    )


class CredentialResolver:
    """Turn a :class:`BedrockConfig` into a :class:`Credential`."""

    def __init__(
        self,
        session: requests.Session | None = None,
        strategies: Sequence[ExchangeStrategy] | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        timeout: float = EXCHANGE_TIMEOUT,
    ) -> None:
        self._session = session or requests.Session()
        self.strategies: List[ExchangeStrategy] = list(
            DEFAULT_EXCHANGE_STRATEGIES if strategies is None else strategies
        )
        self._clock = clock
        self.timeout = timeout
        self._cached: Credential | None = None
        self._lock = threading.Lock()

    @property
    def cached(self) -> Credential | None:
        return self._cached

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None

    def resolve(self, config: BedrockConfig) -> Credential:
        if config.auth_mode == "apikey":
            api_key = config.api_key.strip()
            if not api_key:
                raise MissingCredentials("Missing API key in API-key configuration.")
            if api_key.startswith(EXCHANGE_KEY_PREFIX):
                return self.exchange(api_key)
            return parse_literal_credentials(api_key)

        access_key_id = config.access_key_id.strip()
        secret_access_key = config.secret_access_key.strip()
        if not access_key_id or not secret_access_key:
            raise MissingCredentials("Missing AWS credentials in standard configuration.")
        return Credential(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=config.session_token.strip() or None,
        )

    def exchange(self, api_key: str) -> Credential:
        """Return temporary credentials for an exchange key, reusing the cache when valid."""

        with self._lock:
            now = self._clock()
            cached = self._cached
            if cached is not None and cached.expiration is not None and cached.expiration > now + EXPIRY_MARGIN:
                return cached

            target = self._decode_exchange_url(api_key)
            data = self._fetch_exchange_payload(target)
            credential = self._credential_from_payload(data, now)
            self._cached = credential
            logger.info("Exchanged API key for temporary credentials valid until %s", credential.expiration)
            return credential

    def _decode_exchange_url(self, api_key: str) -> str:
        encoded = api_key.strip()[len(EXCHANGE_KEY_PREFIX):]
        encoded += "=" * (-len(encoded) % 4)
        try:
            target = base64.b64decode(encoded, validate=True).decode("utf-8").strip()
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise KeyExchangeInvalid("Failed to decode exchange key (base64 invalid).") from exc

        if not target:
            raise KeyExchangeInvalid("Exchange key decoded to an empty URL.")
        if not target.startswith("http"):
            target = f"https://{target}"
        return target

    def _fetch_exchange_payload(self, target: str) -> Any:
        attempts: List[str] = []
        for strategy in self.strategies:
            try:
                response = self._session.get(strategy.build_url(target), timeout=self.timeout)
                if 200 <= response.status_code < 300:
                    return response.json()
                attempts.append(f"{strategy.name}: HTTP {response.status_code}")
            except requests.Timeout:
                attempts.append(f"{strategy.name}: Timeout")
            except Exception as exc:  # noqa: BLE001 - a failed strategy falls through to the next
                attempts.append(f"{strategy.name}: {exc}")
            logger.warning("Key exchange strategy failed: %s", attempts[-1])

        raise KeyExchangeFailed(attempts)

    def _credential_from_payload(self, data: Any, now: datetime) -> Credential:
        if not isinstance(data, Mapping):
            raise KeyExchangeInvalid("Invalid response from key exchange: expected a JSON object.")

        access_key_id = _first_field(data, "access_key_id")
        secret_access_key = _first_field(data, "secret_access_key")
        session_token = _first_field(data, "session_token")
        if not access_key_id or not secret_access_key or not session_token:
            raise KeyExchangeInvalid("Invalid response from key exchange: missing credential fields.")

        raw_expiration = _first_field(data, "expiration")
        expiration = _parse_expiration(raw_expiration) if raw_expiration else now + DEFAULT_VALIDITY

        return Credential(
            access_key_id=str(access_key_id),
            secret_access_key=str(secret_access_key),
            session_token=str(session_token),
            expiration=expiration,
        )
