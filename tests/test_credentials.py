from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import pytest
import requests

from contentclassifier.config import BedrockConfig
from contentclassifier.errors import (
    InvalidCredentialFormat,
    KeyExchangeFailed,
    KeyExchangeInvalid,
    MissingCredentials,
)
from contentclassifier.services.credentials import (
    Credential,
    CredentialResolver,
    parse_literal_credentials,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
EXCHANGE_TARGET = "bedrock.example.com/credentials?X-Amz-Signature=abc"
EXCHANGE_KEY = "bedrock-api-key-" + base64.b64encode(EXCHANGE_TARGET.encode()).decode()

EXCHANGE_PAYLOAD = {
    "AccessKeyId": "ASIAEXCHANGED123456",
    "SecretAccessKey": "exchanged-secret-value",
    "SessionToken": "exchanged-session-token",
    "Expiration": "2026-10-19T13:00:00Z",
}


class DummyResponse:
    def __init__(self, payload: Any = None, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    def get(self, url: str, timeout: float) -> DummyResponse:
        self.calls.append(url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def apikey_config(api_key: str) -> BedrockConfig:
    return BedrockConfig(auth_mode="apikey", api_key=api_key)


def test_literal_colon_credentials() -> None:
    credential = parse_literal_credentials("AKIAEXAMPLE1234567:supersecretkey1234")

    assert credential == Credential("AKIAEXAMPLE1234567", "supersecretkey1234", None)


def test_literal_colon_credentials_keep_colons_in_session_token() -> None:
    credential = parse_literal_credentials(" AKIAEXAMPLE1234567:supersecretkey1234:token:with:colons ")

    assert credential.session_token == "token:with:colons"


def test_literal_base64_credentials() -> None:
    encoded = base64.b64encode(b"AKIAEXAMPLE1234567:supersecretkey1234").decode()

    credential = parse_literal_credentials(encoded)

    assert credential.access_key_id == "AKIAEXAMPLE1234567"
    assert credential.secret_access_key == "supersecretkey1234"


def test_literal_json_credentials() -> None:
    raw = json.dumps({"accessKeyId": "AKIAJSON", "secretAccessKey": "secret", "sessionToken": "tok"})

    assert parse_literal_credentials(raw) == Credential("AKIAJSON", "secret", "tok")


@pytest.mark.parametrize(
    "raw",
    ["short", "shortkey:shortsecret", "AKIAEXAMPLE1234567:tooshort", "{not json", "has spaces but no colon"],
)
def test_literal_credentials_reject_unknown_layouts(raw: str) -> None:
    with pytest.raises(InvalidCredentialFormat):
        parse_literal_credentials(raw)


def test_standard_mode_trims_and_drops_empty_session_token() -> None:
    resolver = CredentialResolver(session=FakeSession([]))
    config = BedrockConfig(access_key_id="  AKIASTANDARD  ", secret_access_key=" secret ", session_token="  ")

    credential = resolver.resolve(config)

    assert credential == Credential("AKIASTANDARD", "secret", None)


def test_standard_mode_requires_both_keys() -> None:
    resolver = CredentialResolver(session=FakeSession([]))

    with pytest.raises(MissingCredentials):
        resolver.resolve(BedrockConfig(access_key_id="AKIASTANDARD", secret_access_key="   "))


def test_apikey_mode_requires_a_key() -> None:
    resolver = CredentialResolver(session=FakeSession([]))

    with pytest.raises(MissingCredentials):
        resolver.resolve(apikey_config("  "))


def test_apikey_mode_uses_literal_parsing_without_exchange_prefix() -> None:
    session = FakeSession([])
    resolver = CredentialResolver(session=session)

    credential = resolver.resolve(apikey_config("AKIAEXAMPLE1234567:supersecretkey1234"))

    assert credential.access_key_id == "AKIAEXAMPLE1234567"
    assert session.calls == []


def test_exchange_fetches_decoded_url_through_first_strategy() -> None:
    session = FakeSession([DummyResponse(EXCHANGE_PAYLOAD)])
    resolver = CredentialResolver(session=session, clock=FakeClock(NOW))

    credential = resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert session.calls == [
        "https://corsproxy.io/?" + quote("https://" + EXCHANGE_TARGET, safe="")
    ]
    assert credential == Credential(
        "ASIAEXCHANGED123456",
        "exchanged-secret-value",
        "exchanged-session-token",
        datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc),
    )


def test_exchange_reuses_cache_until_five_minutes_before_expiry() -> None:
    refreshed = dict(EXCHANGE_PAYLOAD, AccessKeyId="ASIAREFRESHED654321", Expiration="2026-10-19T14:00:00Z")
    session = FakeSession([DummyResponse(EXCHANGE_PAYLOAD), DummyResponse(refreshed)])
    clock = FakeClock(NOW)
    resolver = CredentialResolver(session=session, clock=clock)

    first = resolver.resolve(apikey_config(EXCHANGE_KEY))
    clock.now = NOW + timedelta(minutes=54)
    second = resolver.resolve(apikey_config(EXCHANGE_KEY))
    clock.now = NOW + timedelta(minutes=56)
    third = resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert first is second
    assert third.access_key_id == "ASIAREFRESHED654321"
    assert len(session.calls) == 2


def test_clear_cache_forces_a_new_exchange() -> None:
    session = FakeSession([DummyResponse(EXCHANGE_PAYLOAD), DummyResponse(EXCHANGE_PAYLOAD)])
    resolver = CredentialResolver(session=session, clock=FakeClock(NOW))

    resolver.resolve(apikey_config(EXCHANGE_KEY))
    resolver.clear_cache()
    resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert resolver.cached is not None
    assert len(session.calls) == 2


def test_exchange_accepts_camel_case_fields_and_defaults_to_one_hour() -> None:
    payload = {"accessKeyId": "ASIACAMEL", "secretAccessKey": "camel-secret", "sessionToken": "camel-token"}
    resolver = CredentialResolver(session=FakeSession([DummyResponse(payload)]), clock=FakeClock(NOW))

    credential = resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert credential.access_key_id == "ASIACAMEL"
    assert credential.expiration == NOW + timedelta(hours=1)


def test_exchange_falls_back_to_next_strategy() -> None:
    session = FakeSession([DummyResponse(status_code=403), DummyResponse(EXCHANGE_PAYLOAD)])
    resolver = CredentialResolver(session=session, clock=FakeClock(NOW))

    credential = resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert credential.session_token == "exchanged-session-token"
    assert session.calls[1].startswith("https://api.allorigins.win/raw?url=")


def test_exchange_reports_every_failed_strategy() -> None:
    session = FakeSession(
        [DummyResponse(status_code=502), requests.Timeout(), requests.ConnectionError("refused")]
    )
    resolver = CredentialResolver(session=session, clock=FakeClock(NOW))

    with pytest.raises(KeyExchangeFailed) as excinfo:
        resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert excinfo.value.attempts == ["CorsProxy: HTTP 502", "AllOrigins: Timeout", "Direct: refused"]
    assert resolver.cached is None


def test_exchange_requires_all_credential_fields() -> None:
    payload = {key: value for key, value in EXCHANGE_PAYLOAD.items() if key != "SessionToken"}
    resolver = CredentialResolver(session=FakeSession([DummyResponse(payload)]), clock=FakeClock(NOW))

    with pytest.raises(KeyExchangeInvalid):
        resolver.resolve(apikey_config(EXCHANGE_KEY))


def test_exchange_rejects_undecodable_key() -> None:
    session = FakeSession([])
    resolver = CredentialResolver(session=session)

    with pytest.raises(KeyExchangeInvalid):
        resolver.resolve(apikey_config("bedrock-api-key-!!!not-base64!!!"))

    assert session.calls == []


def test_exchange_reads_numeric_expiration_as_epoch_milliseconds() -> None:
    payload = dict(EXCHANGE_PAYLOAD, Expiration=1893456000000)
    resolver = CredentialResolver(session=FakeSession([DummyResponse(payload)]), clock=FakeClock(NOW))

    credential = resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert credential.expiration == datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("expiration", [1e20, "next tuesday"])
def test_exchange_rejects_unusable_expiration(expiration: Any) -> None:
    payload = dict(EXCHANGE_PAYLOAD, Expiration=expiration)
    resolver = CredentialResolver(session=FakeSession([DummyResponse(payload)]), clock=FakeClock(NOW))

    with pytest.raises(KeyExchangeInvalid):
        resolver.resolve(apikey_config(EXCHANGE_KEY))

    assert resolver.cached is None
