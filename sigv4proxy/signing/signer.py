# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Top-level ``sign`` and ``presign`` entry points.

Both run the same pipeline:

1. enforce the clock-drift window around the current time
2. decide how the payload is hashed (trusted header for streamed services,
   body hash otherwise, streaming sentinel for aws-chunked S3 bodies)
3. build the canonical request from the method, the URI without its
   query, the signed headers and the supplied query parameters
4. select the signer variant (generic, S3, legacy S3)
5. derive the signing key from the claimed request date and sign
6. decode the produced authorization and check that it is valid
7. seed a chunk signing session with the signing key and signature

The result is a ``SigningContext``.  Nothing here blocks or keeps state
between calls; the chunk session in the result is the only mutable part.
"""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sigv4proxy.signing.authorization import (
    RequestAuthorization,
    SigningQueryParameters,
)
from sigv4proxy.signing.chunks import ChunkSigner, ChunkSigningSession
from sigv4proxy.signing.errors import (
    ClockDriftExceededError,
    InvalidAuthorizationError,
    MalformedAuthorizationError,
    PresignedExpiryInvalidError,
)
from sigv4proxy.signing.headers import SigningHeaders
from sigv4proxy.signing.keys import signing_key as derive_request_key
from sigv4proxy.signing.signers import (
    AUTHORIZATION_HEADER,
    CONTENT_SHA256_HEADER,
    AwsV4Signer,
    SignableRequest,
    select_signer,
)
from sigv4proxy.signing.timestamps import as_utc
from sigv4proxy.signing.types import (
    Credential,
    RequestContent,
    SigningContext,
    SigningServiceType,
    SigningTrait,
)


logger = logging.getLogger(__name__)

# https://docs.aws.amazon.com/AmazonS3/latest/API/sigv4-query-string-auth.html
# Presigned SigV4 requests are valid for at most 7 days.
MAX_PRESIGNED_REQUEST_AGE = timedelta(days=7)


@dataclass(frozen=True)
class SigningRequest:
    """Immutable inputs of one sign/presign call.

    Attributes:
        service_type: Target service and its traits.
        request_uri: Request URI.  Any query string is dropped; pass query
            parameters separately.
        signing_headers: Headers the client signed.
        query_parameters: Decoded query parameters to sign.
        region: Signing region.
        request_date: Time the client claims to have signed at.
        http_method: HTTP method.
        credential: Credential to sign with.
        max_clock_drift: Allowed distance between request date and now.
        request_content: Request body and its framing.
        request_expiry: Expiry of a presigned request (presign only).
        double_url_encode: Encode the canonical path twice for non-S3
            services.
    """

    service_type: SigningServiceType
    request_uri: str
    signing_headers: SigningHeaders
    query_parameters: tuple[tuple[str, str], ...]
    region: str
    request_date: datetime
    http_method: str
    credential: Credential
    max_clock_drift: timedelta
    request_content: RequestContent = field(default_factory=RequestContent)
    request_expiry: datetime | None = None
    double_url_encode: bool = False


def signing_key(
    credential: Credential,
    request_date: datetime,
    region: str,
    service_name: str,
) -> bytes:
    """Derive the request signing key (see ``sigv4proxy.signing.keys``)."""
    return derive_request_key(credential, request_date, region, service_name)


def enforce_max_drift(
    request_date: datetime,
    past_max_clock_drift: timedelta,
    future_max_clock_drift: timedelta,
    now: datetime | None = None,
) -> None:
    """Reject request dates outside ``[now - past, now + future]``.

    Raises:
        ClockDriftExceededError: If the request date is outside the window.
    """
    now = as_utc(now) if now is not None else datetime.now(UTC)
    drift_from_now = as_utc(request_date) - now
    if (
        drift_from_now < -past_max_clock_drift
        or drift_from_now > future_max_clock_drift
    ):
        logger.debug(
            "Request time exceeds max drift. RequestTime: %s Now: %s",
            request_date.isoformat(),
            now.isoformat(),
        )
        raise ClockDriftExceededError(
            "Request time is outside the allowed clock drift"
        )


def _strip_query(uri: str) -> str:
    parts = urllib.parse.urlsplit(uri)
    return urllib.parse.urlunsplit(
        (parts.scheme, parts.netloc, parts.path or "/", "", "")
    )


@dataclass(frozen=True)
class _InternalAuthorization:
    request_authorization: RequestAuthorization
    signing_uri: str


def _internal_sign(
    request: SigningRequest,
    authorization_builder: Callable[
        [AwsV4Signer, SignableRequest], _InternalAuthorization
    ],
    *,
    content_hash_override: str | None = None,
    chunked: bool = False,
) -> SigningContext:
    signable = SignableRequest(
        method=request.http_method.upper(),
        uri=_strip_query(request.request_uri),
        headers=dict(request.signing_headers.lowercase_headers_to_sign()),
        query_parameters=tuple(request.query_parameters),
        region=request.region,
        service_name=request.service_type.service_name,
        request_date=as_utc(request.request_date),
        credential=request.credential,
        content=request.request_content,
        content_hash_override=content_hash_override,
        chunked=chunked,
        double_url_encode=request.double_url_encode,
    )

    signer = select_signer(request.service_type, request.signing_headers)
    logger.debug(
        "Signing %s %s with %s (service=%s region=%s)",
        signable.method,
        signable.uri,
        signer.name,
        signable.service_name,
        signable.region,
    )
    internal = authorization_builder(signer, signable)
    return _build_signing_context(
        internal,
        signer.signing_key(signable),
        signable.request_date,
        request.signing_headers.get_first(CONTENT_SHA256_HEADER),
    )


def _build_signing_context(
    internal: _InternalAuthorization,
    key: bytes,
    request_date: datetime,
    content_hash: str | None,
) -> SigningContext:
    authorization = internal.request_authorization
    if not authorization.is_valid():
        logger.debug(
            "Invalid RequestAuthorization. RequestAuthorization: %s",
            authorization.authorization,
        )
        raise InvalidAuthorizationError("Signer produced invalid authorization")

    chunk_signer = ChunkSigner(request_date, authorization.key_path, key)
    session = ChunkSigningSession(chunk_signer, authorization.signature)
    return SigningContext(
        request_authorization=authorization,
        chunk_signing_session=session,
        content_hash=content_hash,
        signing_uri=internal.signing_uri,
    )


def sign(
    request: SigningRequest, *, now: datetime | None = None
) -> SigningContext:
    """Sign a request with an ``Authorization`` header.

    Args:
        request: Signing inputs.
        now: Current time; defaults to the wall clock.

    Returns:
        SigningContext with the produced authorization.

    Raises:
        ClockDriftExceededError: If the request date is more than
            ``max_clock_drift`` away from now, in either direction.
        MalformedAuthorizationError: If no parseable authorization was
            produced.
        InvalidAuthorizationError: If the produced authorization is not
            structurally valid.
    """
    enforce_max_drift(
        request.request_date,
        request.max_clock_drift,
        request.max_clock_drift,
        now,
    )
    chunked = request.request_content.content_type.is_aws_chunked

    # Streamed content is not spooled, so the client's hash is reused
    # instead of hashing the body to validate the incoming signature.
    content_hash_override = None
    if request.service_type.has_trait(SigningTrait.STREAM_CONTENT):
        content_hash_override = request.signing_headers.get_first(
            CONTENT_SHA256_HEADER
        )

    def build(
        signer: AwsV4Signer, signable: SignableRequest
    ) -> _InternalAuthorization:
        signed = signer.sign(signable)
        header = signed.headers.get(AUTHORIZATION_HEADER)
        if not header:
            logger.debug('Signer did not generate "Authorization" header')
            raise MalformedAuthorizationError(
                "Signer did not generate an Authorization header"
            )
        authorization = RequestAuthorization.parse(
            header[0], request.credential.session_token
        )
        return _InternalAuthorization(authorization, signed.uri)

    return _internal_sign(
        request,
        build,
        content_hash_override=content_hash_override,
        chunked=chunked,
    )


def presign(
    request: SigningRequest, *, now: datetime | None = None
) -> SigningContext:
    """Sign a request with presigned ``X-Amz-*`` query parameters.

    Args:
        request: Signing inputs; ``request_expiry`` is required.
        now: Current time; defaults to the wall clock.

    Returns:
        SigningContext whose ``signing_uri`` is the full presigned URL.

    Raises:
        PresignedExpiryInvalidError: If the expiry is missing, not after
            the request date, or more than 7 days after it.
        ClockDriftExceededError: If the request date is more than 7 days
            in the past or more than ``max_clock_drift`` in the future.
        MalformedAuthorizationError: If the presigned parameters could not
            be decoded.
        InvalidAuthorizationError: If the produced authorization is not
            structurally valid.
    """
    request_expiry = request.request_expiry
    if request_expiry is None:
        raise PresignedExpiryInvalidError("Presigned request has no expiry")

    request_to_expiry = as_utc(request_expiry) - as_utc(request.request_date)
    if (
        request_to_expiry <= timedelta(0)
        or request_to_expiry > MAX_PRESIGNED_REQUEST_AGE
    ):
        logger.debug(
            "Presigned request expiry is inconsistent with request timestamp. "
            "RequestTime: %s Expiry: %s",
            request.request_date.isoformat(),
            request_expiry.isoformat(),
        )
        raise PresignedExpiryInvalidError(
            "Presigned expiry must be after the request time and within 7 days"
        )
    enforce_max_drift(
        request.request_date,
        MAX_PRESIGNED_REQUEST_AGE,
        request.max_clock_drift,
        now,
    )

    def build(
        signer: AwsV4Signer, signable: SignableRequest
    ) -> _InternalAuthorization:
        signed = signer.presign(signable, as_utc(request_expiry))
        authorization = SigningQueryParameters.split(
            signed.query_parameters
        ).to_request_authorization()
        if authorization is None:
            logger.debug("Presigner did not generate a valid request")
            raise MalformedAuthorizationError(
                "Presigner did not generate a valid request"
            )
        return _InternalAuthorization(authorization, signed.uri)

    return _internal_sign(request, build)
