# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the sign/presign orchestration."""

import dataclasses
import hashlib
import re
from datetime import UTC, datetime, timedelta
from http import HTTPStatus

import pytest

from sigv4proxy.signing.authorization import RequestAuthorization
from sigv4proxy.signing.chunks import SessionState
from sigv4proxy.signing.errors import (
    ClockDriftExceededError,
    MalformedAuthorizationError,
    PresignedExpiryInvalidError,
)
from sigv4proxy.signing.headers import SigningHeaders
from sigv4proxy.signing.keys import derive_signing_key
from sigv4proxy.signing.signer import (
    MAX_PRESIGNED_REQUEST_AGE,
    SigningRequest,
    enforce_max_drift,
    presign,
    sign,
    signing_key,
)
from sigv4proxy.signing.types import (
    S3,
    STS,
    ContentType,
    Credential,
    RequestContent,
)


NOW = datetime(2024, 1, 1, tzinfo=UTC)
HEX64 = re.compile(r"[0-9a-f]{64}")


class TestSign:
    """Tests for sign()."""

    def test_s3_get_scenario(self, s3_get_request: SigningRequest) -> None:
        context = sign(s3_get_request, now=NOW)
        auth = context.request_authorization
        assert auth.authorization.startswith(
            "AWS4-HMAC-SHA256 "
            "Credential=AKIDEXAMPLE/20240101/us-east-1/s3/aws4_request, "
        )
        assert HEX64.fullmatch(auth.signature)
        assert auth.is_valid()
        assert context.signing_uri == "https://s3.amazonaws.com/bucket/key"

    def test_own_authorization_parses_valid(
        self, s3_get_request: SigningRequest
    ) -> None:
        context = sign(s3_get_request, now=NOW)
        reparsed = RequestAuthorization.parse(
            context.request_authorization.authorization
        )
        assert reparsed.is_valid()
        assert reparsed == dataclasses.replace(
            context.request_authorization, security_token=None
        )

    def test_query_in_uri_ignored(self, s3_get_request: SigningRequest) -> None:
        """Query parameters are only taken from query_parameters."""
        with_query = dataclasses.replace(
            s3_get_request,
            request_uri="https://s3.amazonaws.com/bucket/key?ignored=1",
        )
        assert (
            sign(with_query, now=NOW).request_authorization.signature
            == sign(s3_get_request, now=NOW).request_authorization.signature
        )

    def test_deterministic(self, s3_get_request: SigningRequest) -> None:
        first = sign(s3_get_request, now=NOW)
        second = sign(s3_get_request, now=NOW + timedelta(minutes=5))
        assert (
            first.request_authorization.signature
            == second.request_authorization.signature
        )

    def test_session_token_carried(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = dataclasses.replace(
            s3_get_request,
            credential=Credential("AKIDEXAMPLE", "secret", "token"),
        )
        auth = sign(request, now=NOW).request_authorization
        assert auth.security_token == "token"
        assert "x-amz-security-token" in auth.signed_lowercase_headers

    def test_content_hash_from_header(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = dataclasses.replace(
            s3_get_request,
            signing_headers=SigningHeaders.build(
                {"Host": "s3.amazonaws.com", "X-Amz-Content-Sha256": "abc"},
                ["host", "x-amz-content-sha256"],
            ),
        )
        assert sign(request, now=NOW).content_hash == "abc"

    def test_stream_content_trusts_client_hash(
        self, s3_get_request: SigningRequest
    ) -> None:
        """For streamed services the body is never hashed."""
        claimed = hashlib.sha256(b"claimed").hexdigest()
        headers = SigningHeaders.build(
            {"Host": "s3.amazonaws.com", "X-Amz-Content-Sha256": claimed},
            ["host", "x-amz-content-sha256"],
        )
        a = dataclasses.replace(
            s3_get_request,
            signing_headers=headers,
            request_content=RequestContent(ContentType.STANDARD, b"one"),
        )
        b = dataclasses.replace(
            a, request_content=RequestContent(ContentType.STANDARD, b"two")
        )
        assert (
            sign(a, now=NOW).request_authorization.signature
            == sign(b, now=NOW).request_authorization.signature
        )

    def test_generic_service_hashes_body(
        self, s3_get_request: SigningRequest
    ) -> None:
        a = dataclasses.replace(
            s3_get_request,
            service_type=STS,
            request_uri="https://sts.amazonaws.com/",
            signing_headers=SigningHeaders.build(
                {"Host": "sts.amazonaws.com"}, ["host"]
            ),
            http_method="POST",
            request_content=RequestContent(ContentType.STANDARD, b"one"),
        )
        b = dataclasses.replace(
            a, request_content=RequestContent(ContentType.STANDARD, b"two")
        )
        assert (
            sign(a, now=NOW).request_authorization.signature
            != sign(b, now=NOW).request_authorization.signature
        )

    def test_legacy_signature_diverges(
        self, s3_get_request: SigningRequest
    ) -> None:
        """Signing user-agent selects the legacy signer."""
        raw = {"Host": "s3.amazonaws.com", "User-Agent": "aws-sdk-java/1.11"}
        legacy = dataclasses.replace(
            s3_get_request,
            signing_headers=SigningHeaders.build(raw, ["host", "user-agent"]),
        )
        modern = dataclasses.replace(
            s3_get_request,
            signing_headers=SigningHeaders.build(raw, ["host"]),
        )
        legacy_auth = sign(legacy, now=NOW).request_authorization
        modern_auth = sign(modern, now=NOW).request_authorization
        assert "user-agent" in legacy_auth.signed_lowercase_headers
        assert "user-agent" not in modern_auth.signed_lowercase_headers
        assert legacy_auth.signature != modern_auth.signature

    def test_chunk_session_seeded(self, s3_get_request: SigningRequest) -> None:
        request = dataclasses.replace(
            s3_get_request,
            http_method="PUT",
            request_content=RequestContent(ContentType.AWS_CHUNKED),
        )
        context = sign(request, now=NOW)
        session = context.chunk_signing_session
        assert session.state is SessionState.SEEDED
        assert (
            session.previous_signature
            == context.request_authorization.signature
        )
        assert context.request_authorization.signed_lowercase_headers == (
            "host",
            "x-amz-content-sha256",
            "x-amz-date",
        )

    def test_streaming_documentation_seed(
        self, doc_credential: Credential
    ) -> None:
        """S3 documentation: seed signature of a chunked upload."""
        raw = {
            "Host": "s3.amazonaws.com",
            "x-amz-date": "20130524T000000Z",
            "x-amz-storage-class": "REDUCED_REDUNDANCY",
            "x-amz-content-sha256": "STREAMING-AWS4-HMAC-SHA256-PAYLOAD",
            "Content-Encoding": "aws-chunked",
            "x-amz-decoded-content-length": "66560",
            "Content-Length": "66824",
        }
        request_date = datetime(2013, 5, 24, tzinfo=UTC)
        request = SigningRequest(
            service_type=S3,
            request_uri=(
                "https://s3.amazonaws.com/examplebucket/chunkObject.txt"
            ),
            signing_headers=SigningHeaders.build(raw, list(raw)),
            query_parameters=(),
            region="us-east-1",
            request_date=request_date,
            http_method="PUT",
            credential=doc_credential,
            max_clock_drift=timedelta(minutes=15),
            request_content=RequestContent(ContentType.AWS_CHUNKED),
        )
        context = sign(request, now=request_date)
        assert context.request_authorization.signature == (
            "4f232c4386841ef735655705268965c44a0e4690baa4adea153f7db9fa80a0a9"
        )
        first = context.chunk_signing_session.next_signature(
            hashlib.sha256(b"a" * 65536).hexdigest()
        )
        assert first == (
            "ad80c730a21e5b8d04586a2213dd63b9a0e99e0e2307b0ade35a65485a288648"
        )

    @pytest.mark.parametrize(
        "offset",
        [timedelta(minutes=16), -timedelta(minutes=16)],
        ids=["future", "past"],
    )
    def test_drift_rejected(
        self, s3_get_request: SigningRequest, offset: timedelta
    ) -> None:
        with pytest.raises(ClockDriftExceededError) as exc_info:
            sign(s3_get_request, now=NOW + offset)
        assert exc_info.value.status is HTTPStatus.BAD_REQUEST

    @pytest.mark.parametrize(
        "offset", [timedelta(minutes=15), -timedelta(minutes=15)]
    )
    def test_drift_boundary_accepted(
        self, s3_get_request: SigningRequest, offset: timedelta
    ) -> None:
        sign(s3_get_request, now=NOW + offset)

    def test_region_breaking_scope_rejected(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = dataclasses.replace(s3_get_request, region="us/east")
        with pytest.raises(MalformedAuthorizationError):
            sign(request, now=NOW)


class TestPresign:
    """Tests for presign()."""

    def _request(
        self, base: SigningRequest, expiry: timedelta | None
    ) -> SigningRequest:
        return dataclasses.replace(
            base,
            request_expiry=None if expiry is None else NOW + expiry,
        )

    def test_presigned_url(self, s3_get_request: SigningRequest) -> None:
        request = self._request(s3_get_request, timedelta(hours=1))
        context = presign(request, now=NOW)
        auth = context.request_authorization
        assert context.signing_uri.startswith(
            "https://s3.amazonaws.com/bucket/key?X-Amz-Algorithm="
        )
        assert "X-Amz-Expires=3600" in context.signing_uri
        assert context.signing_uri.endswith(f"X-Amz-Signature={auth.signature}")
        assert auth.expiry == NOW + timedelta(hours=1)
        assert auth.is_valid()

    def test_exactly_seven_days_accepted(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = self._request(s3_get_request, MAX_PRESIGNED_REQUEST_AGE)
        context = presign(request, now=NOW)
        assert "X-Amz-Expires=604800" in context.signing_uri

    @pytest.mark.parametrize(
        "expiry",
        [
            None,
            timedelta(0),
            -timedelta(seconds=1),
            timedelta(days=7, seconds=1),
            timedelta(days=8),
        ],
    )
    def test_invalid_expiry(
        self, s3_get_request: SigningRequest, expiry: timedelta | None
    ) -> None:
        with pytest.raises(PresignedExpiryInvalidError):
            presign(self._request(s3_get_request, expiry), now=NOW)

    def test_past_drift_uses_seven_days(
        self, s3_get_request: SigningRequest
    ) -> None:
        """A presigned URL can be used long after it was signed."""
        request = self._request(s3_get_request, timedelta(days=7))
        presign(request, now=NOW + timedelta(days=6))

    def test_past_drift_beyond_seven_days(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = self._request(s3_get_request, timedelta(days=7))
        with pytest.raises(ClockDriftExceededError):
            presign(request, now=NOW + timedelta(days=7, seconds=1))

    def test_future_drift_uses_max_clock_drift(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = self._request(s3_get_request, timedelta(hours=1))
        with pytest.raises(ClockDriftExceededError):
            presign(request, now=NOW - timedelta(minutes=16))

    def test_s3_presign_unsigned_payload(
        self, s3_get_request: SigningRequest
    ) -> None:
        """The body does not influence an S3 presigned signature."""
        a = self._request(s3_get_request, timedelta(hours=1))
        b = dataclasses.replace(
            a, request_content=RequestContent(ContentType.STANDARD, b"x")
        )
        assert (
            presign(a, now=NOW).request_authorization.signature
            == presign(b, now=NOW).request_authorization.signature
        )

    def test_session_token_in_url(
        self, s3_get_request: SigningRequest
    ) -> None:
        request = dataclasses.replace(
            self._request(s3_get_request, timedelta(hours=1)),
            credential=Credential("AKIDEXAMPLE", "secret", "tok/en"),
        )
        context = presign(request, now=NOW)
        assert "X-Amz-Security-Token=tok%2Fen" in context.signing_uri
        assert context.request_authorization.security_token == "tok/en"


class TestHelpers:
    """Tests for enforce_max_drift and signing_key."""

    def test_enforce_max_drift_asymmetric(self) -> None:
        enforce_max_drift(
            NOW, timedelta(days=7), timedelta(0), now=NOW + timedelta(days=1)
        )
        with pytest.raises(ClockDriftExceededError):
            enforce_max_drift(
                NOW,
                timedelta(days=7),
                timedelta(0),
                now=NOW - timedelta(seconds=1),
            )

    def test_naive_request_date_is_utc(self) -> None:
        enforce_max_drift(
            datetime(2024, 1, 1),
            timedelta(0),
            timedelta(0),
            now=NOW,
        )

    def test_signing_key(self, credential: Credential) -> None:
        assert signing_key(credential, NOW, "us-east-1", "s3") == (
            derive_signing_key(
                credential.secret_key, "20240101", "us-east-1", "s3"
            )
        )
