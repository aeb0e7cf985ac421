"""
Unit tests for client/session.py -- L2 signing and server-time verification.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from unittest.mock import patch

import httpx
import pytest
import respx

from client.auth import DerivedCredential
from client.errors import AuthenticationVerificationError, CredentialError, OwnerMismatchError
from client.http import HttpTransport
from client.session import (
    MAX_SERVER_TIME_SEC,
    SERVER_TIME,
    AuthenticatedSession,
    ServerTime,
    _parse_server_time,
    build_hmac_signature,
    normalize_server_time,
)
from client.wallet import WalletIdentity

TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
HOST = "https://clob.test"
SECRET = base64.urlsafe_b64encode(b"0123456789abcdef0123456789abcdef").decode()


def _credential(secret: str = SECRET, owner: str = TEST_ADDRESS) -> DerivedCredential:
    return DerivedCredential(
        api_key="key-abc",
        api_secret=secret,
        api_passphrase="phrase-xyz",
        owner_address=owner,
    )


def _session(secret: str = SECRET, max_retries: int = 1) -> AuthenticatedSession:
    transport = HttpTransport(HOST, max_retries=max_retries, backoff_sec=0.0)
    return AuthenticatedSession(WalletIdentity(TEST_KEY), _credential(secret), transport)


class TestHmacSignature:
    def test_matches_reference(self):
        expected = base64.urlsafe_b64encode(
            hmac.new(
                base64.urlsafe_b64decode(SECRET),
                b"1700000000GET/time",
                hashlib.sha256,
            ).digest()
        ).decode()
        assert build_hmac_signature(SECRET, 1700000000, "get", "/time") == expected

    def test_body_changes_signature(self):
        a = build_hmac_signature(SECRET, 1, "POST", "/order")
        b = build_hmac_signature(SECRET, 1, "POST", "/order", '{"x":1}')
        assert a != b


class TestServerTimeNormalization:
    def test_seconds_to_milliseconds(self):
        assert normalize_server_time(1700000000) == 1_700_000_000_000

    def test_known_instant(self):
        st = ServerTime(raw_seconds=1700000000, epoch_ms=normalize_server_time(1700000000))
        assert st.as_datetime == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert st.isoformat() == "2023-11-14T22:13:20Z"


class TestL2Headers:
    def test_headers(self):
        headers = _session().l2_headers("GET", "/time", timestamp=1700000000)
        assert headers["POLY_ADDRESS"] == TEST_ADDRESS
        assert headers["POLY_API_KEY"] == "key-abc"
        assert headers["POLY_PASSPHRASE"] == "phrase-xyz"
        assert headers["POLY_TIMESTAMP"] == "1700000000"
        assert headers["POLY_SIGNATURE"] == build_hmac_signature(SECRET, 1700000000, "GET", "/time")

    def test_signed_with_credential_not_wallet(self):
        headers = _session().l2_headers("GET", "/time", timestamp=1)
        # HMAC output is 32 bytes; a wallet signature would be 65
        assert len(base64.urlsafe_b64decode(headers["POLY_SIGNATURE"])) == 32

    def test_credential_owner_must_match_wallet(self):
        transport = HttpTransport(HOST)
        other = _credential(owner="0x70997970C51812dc3A010C7d01b50e0d17dc79C8")
        with pytest.raises(OwnerMismatchError):
            AuthenticatedSession(WalletIdentity(TEST_KEY), other, transport)


class TestVerify:
    @respx.mock
    def test_bare_integer_response(self):
        route = respx.get(f"{HOST}{SERVER_TIME}").mock(
            return_value=httpx.Response(200, json=1700000000)
        )
        st = _session().verify()
        assert st.raw_seconds == 1700000000
        assert st.epoch_ms == 1_700_000_000_000
        assert st.isoformat() == "2023-11-14T22:13:20Z"
        sent = route.calls.last.request.headers
        assert sent["POLY_API_KEY"] == "key-abc"
        assert "POLY_SIGNATURE" in sent

    @respx.mock
    def test_object_response(self):
        respx.get(f"{HOST}{SERVER_TIME}").mock(
            return_value=httpx.Response(200, json={"serverTime": 1700000000})
        )
        assert _session().verify().as_datetime.year == 2023

    @respx.mock
    def test_rejected_credentials(self):
        respx.get(f"{HOST}{SERVER_TIME}").mock(
            return_value=httpx.Response(401, json={"error": "Unauthorized/Invalid api key"})
        )
        with pytest.raises(AuthenticationVerificationError):
            _session().verify()

    @respx.mock
    @pytest.mark.parametrize("body", [
        {"serverTime": None}, {"other": 1}, "soon", -5, 0, True, [1],
        1_700_000_000_000, {"serverTime": 1_700_000_000_000_000},
    ])
    def test_malformed_payload(self, body):
        respx.get(f"{HOST}{SERVER_TIME}").mock(return_value=httpx.Response(200, json=body))
        with pytest.raises(AuthenticationVerificationError):
            _session().verify()

    @respx.mock
    @patch("client.http.time.sleep")
    def test_unreachable(self, mock_sleep):
        respx.get(f"{HOST}{SERVER_TIME}").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(AuthenticationVerificationError) as exc_info:
            _session(max_retries=2).verify()
        assert exc_info.value.__cause__ is not None

    def test_malformed_secret(self):
        with respx.mock(assert_all_called=False) as router:
            route = router.get(f"{HOST}{SERVER_TIME}").mock(return_value=httpx.Response(200, json=1))
            with pytest.raises(AuthenticationVerificationError):
                _session(secret="not base64!").verify()
            assert not route.called

    @respx.mock
    @patch("client.http.time.sleep")
    def test_headers_resigned_per_retry(self, mock_sleep):
        route = respx.get(f"{HOST}{SERVER_TIME}").mock(side_effect=[
            httpx.Response(503),
            httpx.Response(200, json=1700000000),
        ])
        with patch("client.session.time") as mock_time:
            mock_time.time.side_effect = [100.0, 101.0]
            _session(max_retries=2).verify()
        stamps = [c.request.headers["POLY_TIMESTAMP"] for c in route.calls]
        assert stamps == ["100", "101"]


class TestServerTimeBounds:
    def test_last_representable_second_accepted(self):
        assert _parse_server_time(MAX_SERVER_TIME_SEC) == MAX_SERVER_TIME_SEC

    def test_milliseconds_answer_rejected(self):
        with pytest.raises(ValueError, match="out of range"):
            _parse_server_time(1_700_000_000_000)

    @respx.mock
    def test_milliseconds_answer_is_verification_failure(self):
        respx.get(f"{HOST}{SERVER_TIME}").mock(
            return_value=httpx.Response(200, json=1_700_000_000_000_000)
        )
        with pytest.raises(AuthenticationVerificationError) as exc_info:
            _session().verify()
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_owner_mismatch_is_credential_error(self):
        other = _credential(owner="0x70997970C51812dc3A010C7d01b50e0d17dc79C8")
        with pytest.raises(CredentialError):
            AuthenticatedSession(WalletIdentity(TEST_KEY), other, HttpTransport(HOST))
