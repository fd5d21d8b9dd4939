# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 signer variants.

Three variants share one algorithm and differ only in a few rules:

``AwsV4Signer``
    Generic SigV4 used by most services.  The URI path is normalised and
    the payload hash is the SHA-256 of the body.

``AwsS3V4Signer``
    S3 flavour.  No path normalisation, the payload hash is written into
    the ``x-amz-content-sha256`` header, aws-chunked bodies sign the
    ``STREAMING-AWS4-HMAC-SHA256-PAYLOAD`` sentinel and presigned URLs sign
    ``UNSIGNED-PAYLOAD``.

``LegacyS3V4Signer``
    S3 flavour for older clients that include ``user-agent`` in their
    signature.  Current signers never sign ``user-agent``.

All variants add ``host`` (from the URI, when absent) and ``x-amz-date``,
and carry a session token as ``x-amz-security-token``.
"""

from __future__ import annotations

import urllib.parse
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from sigv4proxy.signing.authorization import (
    SIGNING_QUERY_PARAMETERS,
    X_AMZ_ALGORITHM,
    X_AMZ_CREDENTIAL,
    X_AMZ_DATE,
    X_AMZ_EXPIRES,
    X_AMZ_SECURITY_TOKEN,
    X_AMZ_SIGNATURE,
    X_AMZ_SIGNED_HEADERS,
)
from sigv4proxy.signing.canonical import (
    build_canonical_request,
    canonical_query_string,
    canonical_uri,
    encode_query_string,
    signed_headers_string,
)
from sigv4proxy.signing.headers import SigningHeaders
from sigv4proxy.signing.keys import (
    ALGORITHM,
    build_string_to_sign,
    compute_signature,
    key_path,
    signing_key,
)
from sigv4proxy.signing.timestamps import to_request_time
from sigv4proxy.signing.types import (
    Credential,
    RequestContent,
    SigningServiceType,
    SigningTrait,
)


UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
STREAMING_PAYLOAD = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"

CONTENT_SHA256_HEADER = "x-amz-content-sha256"
DATE_HEADER = "x-amz-date"
SECURITY_TOKEN_HEADER = "x-amz-security-token"
AUTHORIZATION_HEADER = "authorization"

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class SignableRequest:
    """Everything a signer variant needs, fixed for one request.

    Attributes:
        method: HTTP method.
        uri: Absolute URI without query string.
        headers: Lower-cased headers to sign (name -> values).
        query_parameters: Decoded query parameters.
        region: Signing region.
        service_name: Signing service name.
        request_date: Claimed request time.
        credential: Credential to sign with.
        content: Request body.
        content_hash_override: Trusted payload hash used instead of hashing
            the body (streamed services).
        chunked: True for aws-chunked bodies.
        double_url_encode: Encode the canonical path twice (generic only).
    """

    method: str
    uri: str
    headers: Mapping[str, tuple[str, ...]]
    query_parameters: tuple[tuple[str, str], ...]
    region: str
    service_name: str
    request_date: datetime
    credential: Credential
    content: RequestContent = field(default_factory=RequestContent)
    content_hash_override: str | None = None
    chunked: bool = False
    double_url_encode: bool = False


@dataclass(frozen=True)
class SignedRequest:
    """Output of a signer variant.

    Attributes:
        headers: Final lower-cased headers, including ``authorization``
            for header signing.
        query_parameters: Final query parameters, including the ``X-Amz-*``
            fields for presigning.
        uri: Signed URI including its query string.
        signature: Hex signature.
        signed_headers: ``;``-joined signed header names.
        canonical_request: The canonical request that was signed.
    """

    headers: dict[str, tuple[str, ...]]
    query_parameters: tuple[tuple[str, str], ...]
    uri: str
    signature: str
    signed_headers: str
    canonical_request: str


def _host_header(uri: str) -> str:
    """Host header value for an absolute URI, omitting default ports."""
    parts = urllib.parse.urlsplit(uri)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None and parts.port != _DEFAULT_PORTS.get(
        parts.scheme
    ):
        host = f"{host}:{parts.port}"
    return host


def _with_query(uri: str, params: tuple[tuple[str, str], ...]) -> str:
    if not params:
        return uri
    return f"{uri}?{encode_query_string(params)}"


class AwsV4Signer:
    """Generic SigV4 signer."""

    #: Headers never included in a signature.
    unsigned_headers: frozenset[str] = frozenset(
        {
            AUTHORIZATION_HEADER,
            "connection",
            "expect",
            "user-agent",
            "x-amzn-trace-id",
        }
    )
    normalize_path = True
    adds_content_sha256_header = False

    name = "aws-v4"

    # -- payload ------------------------------------------------------------

    def payload_hash(self, request: SignableRequest) -> str:
        """Payload hash for header signing."""
        if request.content_hash_override is not None:
            return request.content_hash_override
        return request.content.payload_hash()

    def presign_payload_hash(self, request: SignableRequest) -> str:
        """Payload hash for presigning."""
        return self.payload_hash(request)

    # -- helpers ------------------------------------------------------------

    def signing_key(self, request: SignableRequest) -> bytes:
        return signing_key(
            request.credential,
            request.request_date,
            request.region,
            request.service_name,
        )

    def _base_headers(
        self, request: SignableRequest
    ) -> dict[str, tuple[str, ...]]:
        headers = {
            name.lower(): tuple(values)
            for name, values in request.headers.items()
            if name.lower() not in self.unsigned_headers
        }
        if "host" not in headers:
            headers["host"] = (_host_header(request.uri),)
        return headers

    def _canonical_uri(self, request: SignableRequest) -> str:
        path = urllib.parse.urlsplit(request.uri).path
        return canonical_uri(
            path,
            normalize_path=self.normalize_path,
            double_encode=request.double_url_encode and self.normalize_path,
        )

    def _sign_canonical(
        self,
        request: SignableRequest,
        headers: Mapping[str, tuple[str, ...]],
        query_parameters: tuple[tuple[str, str], ...],
        payload_hash: str,
    ) -> tuple[str, str, str]:
        """Returns (signature, signed headers, canonical request)."""
        creq, signed_headers = build_canonical_request(
            method=request.method,
            uri=self._canonical_uri(request),
            query=canonical_query_string(query_parameters),
            headers=headers,
            payload_hash=payload_hash,
        )
        scope = key_path(
            request.request_date, request.region, request.service_name
        )
        string_to_sign = build_string_to_sign(
            to_request_time(request.request_date), scope, creq
        )
        signature = compute_signature(self.signing_key(request), string_to_sign)
        return signature, signed_headers, creq

    # -- entry points -------------------------------------------------------

    def sign(self, request: SignableRequest) -> SignedRequest:
        """Sign with an ``Authorization`` header."""
        headers = self._base_headers(request)
        headers[DATE_HEADER] = (to_request_time(request.request_date),)
        if request.credential.session_token:
            headers[SECURITY_TOKEN_HEADER] = (request.credential.session_token,)

        payload_hash = self.payload_hash(request)
        if self.adds_content_sha256_header:
            headers[CONTENT_SHA256_HEADER] = (payload_hash,)

        signature, signed_headers, creq = self._sign_canonical(
            request, headers, request.query_parameters, payload_hash
        )
        scope = key_path(
            request.request_date, request.region, request.service_name
        )
        headers[AUTHORIZATION_HEADER] = (
            f"{ALGORITHM} "
            f"Credential={request.credential.access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}",
        )
        return SignedRequest(
            headers=headers,
            query_parameters=request.query_parameters,
            uri=_with_query(request.uri, request.query_parameters),
            signature=signature,
            signed_headers=signed_headers,
            canonical_request=creq,
        )

    def presign(
        self, request: SignableRequest, expiry: datetime
    ) -> SignedRequest:
        """Sign with ``X-Amz-*`` query parameters valid until ``expiry``."""
        headers = self._base_headers(request)
        scope = key_path(
            request.request_date, request.region, request.service_name
        )
        # Counted from the X-Amz-Date instant, which has no sub-seconds
        signed_date = request.request_date.replace(microsecond=0)
        expires_seconds = int((expiry - signed_date).total_seconds())

        query = [
            (name, value)
            for name, value in request.query_parameters
            if name not in SIGNING_QUERY_PARAMETERS
        ]
        query += [
            (X_AMZ_ALGORITHM, ALGORITHM),
            (X_AMZ_CREDENTIAL, f"{request.credential.access_key}/{scope}"),
            (X_AMZ_DATE, to_request_time(request.request_date)),
            (X_AMZ_EXPIRES, str(expires_seconds)),
            (X_AMZ_SIGNED_HEADERS, signed_headers_string(headers)),
        ]
        if request.credential.session_token:
            query.append(
                (X_AMZ_SECURITY_TOKEN, request.credential.session_token)
            )

        signature, signed_headers, creq = self._sign_canonical(
            request, headers, tuple(query), self.presign_payload_hash(request)
        )
        query.append((X_AMZ_SIGNATURE, signature))
        final_query = tuple(query)
        return SignedRequest(
            headers=headers,
            query_parameters=final_query,
            uri=_with_query(request.uri, final_query),
            signature=signature,
            signed_headers=signed_headers,
            canonical_request=creq,
        )


class AwsS3V4Signer(AwsV4Signer):
    """S3 SigV4 signer."""

    normalize_path = False
    adds_content_sha256_header = True

    name = "aws-s3-v4"

    def payload_hash(self, request: SignableRequest) -> str:
        if request.content_hash_override is not None:
            return request.content_hash_override
        if request.chunked:
            return STREAMING_PAYLOAD
        return request.content.payload_hash()

    def presign_payload_hash(self, request: SignableRequest) -> str:
        return UNSIGNED_PAYLOAD


class LegacyS3V4Signer(AwsS3V4Signer):
    """S3 SigV4 signer that also signs ``user-agent``."""

    unsigned_headers = AwsS3V4Signer.unsigned_headers - {"user-agent"}

    name = "legacy-aws-s3-v4"


aws_v4_signer = AwsV4Signer()
aws_s3_v4_signer = AwsS3V4Signer()
legacy_s3_v4_signer = LegacyS3V4Signer()


def select_signer(
    service_type: SigningServiceType, signing_headers: SigningHeaders
) -> AwsV4Signer:
    """Pick the signer variant for a request.

    S3-style services use the legacy variant when the client signed
    ``user-agent`` and the modern one otherwise; everything else uses the
    generic signer.
    """
    if service_type.has_trait(SigningTrait.S3V4_SIGNER):
        if signing_headers.is_legacy:
            return legacy_s3_v4_signer
        return aws_s3_v4_signer
    return aws_v4_signer
