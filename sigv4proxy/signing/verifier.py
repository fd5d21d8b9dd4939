# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Verification of incoming SigV4-signed requests.

The proxy re-computes the signature of an incoming request with the
credential the client claims to hold and compares it with the signature
the client sent.  Header-signed and presigned requests are both
supported.  Credential lookup is delegated to a caller-supplied provider.

Usage::

    verifier = RequestVerifier(lambda access_key, token: lookup(access_key))
    verified = verifier.verify_werkzeug(request)
    for chunk in verified.chunks(request.stream):
        ...
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from http import HTTPStatus
from typing import TYPE_CHECKING, BinaryIO

from sigv4proxy.signing.authorization import (
    X_AMZ_SIGNED_HEADERS,
    RequestAuthorization,
    SigningQueryParameters,
)
from sigv4proxy.signing.chunks import AwsChunkedReader
from sigv4proxy.signing.errors import (
    ClockDriftExceededError,
    InvalidAuthorizationError,
    MalformedAuthorizationError,
    SignatureMismatchError,
)
from sigv4proxy.signing.headers import HeaderSource, SigningHeaders
from sigv4proxy.signing.signer import SigningRequest, presign, sign
from sigv4proxy.signing.signers import (
    CONTENT_SHA256_HEADER,
    DATE_HEADER,
    SECURITY_TOKEN_HEADER,
    STREAMING_PAYLOAD,
)
from sigv4proxy.signing.timestamps import as_utc, from_request_time
from sigv4proxy.signing.types import (
    S3,
    STS,
    ContentType,
    Credential,
    RequestContent,
    SigningContext,
    SigningServiceType,
)


if TYPE_CHECKING:
    from werkzeug.wrappers import Request

    from sigv4proxy.config import SigningConfig


logger = logging.getLogger(__name__)

#: Looks up the credential for ``(access_key, session_token)``.
CredentialProvider = Callable[[str, str | None], Credential | None]

DEFAULT_MAX_CLOCK_DRIFT = timedelta(minutes=15)

DEFAULT_SERVICE_TYPES: Mapping[str, SigningServiceType] = {
    S3.service_name: S3,
    STS.service_name: STS,
}


@dataclass(frozen=True)
class VerifiedRequest:
    """An incoming request whose signature checked out.

    Attributes:
        credential: Credential the request was signed with.
        signing_context: Context of the re-computed signature.
    """

    credential: Credential
    signing_context: SigningContext

    def chunks(self, stream: BinaryIO) -> Iterator[bytes]:
        """Decode an aws-chunked body, verifying every chunk signature."""
        reader = AwsChunkedReader(
            stream, self.signing_context.chunk_signing_session
        )
        return iter(reader)


def _first_header(headers: HeaderSource, name: str) -> str | None:
    """Case-insensitive first value of a header in the raw request."""
    return SigningHeaders.build(headers, [name]).get_first(name)


def _raw_request_url(request: Request) -> str:
    """Request URL with the path exactly as sent on the request line.

    ``PATH_INFO`` is already percent-decoded, so ``%2F`` in an S3 key is
    indistinguishable from ``/``.  Servers that expose the raw URI
    (``REQUEST_URI`` or ``RAW_URI``) let the signed path be rebuilt.
    """
    raw_uri = request.environ.get("REQUEST_URI") or request.environ.get(
        "RAW_URI"
    )
    if not raw_uri or not raw_uri.startswith("/"):
        return request.base_url
    host_url = request.host_url.rstrip("/")
    return host_url + raw_uri.split("?", 1)[0]


def detect_content_type(headers: HeaderSource, has_body: bool) -> ContentType:
    """Classify the body framing from the request headers.

    Args:
        headers: Raw request headers.
        has_body: Whether the request carries a body at all.

    Returns:
        ContentType of the body.
    """
    content_encoding = _first_header(headers, "content-encoding") or ""
    transfer_encoding = _first_header(headers, "transfer-encoding") or ""
    content_sha256 = _first_header(headers, CONTENT_SHA256_HEADER) or ""

    aws_chunked = (
        "aws-chunked" in content_encoding.lower()
        or content_sha256.startswith(STREAMING_PAYLOAD)
    )
    w3c_chunked = "chunked" in transfer_encoding.lower()
    if aws_chunked:
        if w3c_chunked:
            return ContentType.AWS_CHUNKED_IN_W3C_CHUNKED
        return ContentType.AWS_CHUNKED
    if w3c_chunked:
        return ContentType.W3C_CHUNKED
    if has_body:
        return ContentType.STANDARD
    return ContentType.EMPTY


class RequestVerifier:
    """Verifies header-signed and presigned requests."""

    def __init__(
        self,
        credential_provider: CredentialProvider,
        *,
        max_clock_drift: timedelta = DEFAULT_MAX_CLOCK_DRIFT,
        service_types: Mapping[str, SigningServiceType] | None = None,
        double_url_encode: bool = False,
    ) -> None:
        self._credential_provider = credential_provider
        self._max_clock_drift = max_clock_drift
        self._service_types = dict(
            DEFAULT_SERVICE_TYPES if service_types is None else service_types
        )
        self._double_url_encode = double_url_encode

    @classmethod
    def from_config(
        cls, config: SigningConfig, credential_provider: CredentialProvider
    ) -> RequestVerifier:
        """Create a verifier using the settings of a SigningConfig."""
        return cls(
            credential_provider,
            max_clock_drift=config.max_clock_drift,
            service_types=config.service_types,
            double_url_encode=config.double_url_encode,
        )

    def service_type(self, service_name: str) -> SigningServiceType:
        """Known service type, or a generic one for unknown services."""
        return self._service_types.get(
            service_name, SigningServiceType(service_name)
        )

    def _resolve_credential(
        self, authorization: RequestAuthorization
    ) -> Credential:
        credential = self._credential_provider(
            authorization.access_key, authorization.security_token
        )
        if credential is None:
            logger.debug("Unknown access key: %s", authorization.access_key)
            raise InvalidAuthorizationError("Unknown access key")
        return credential

    @staticmethod
    def _compare(
        context: SigningContext, authorization: RequestAuthorization
    ) -> None:
        expected = context.request_authorization.signature
        if not hmac.compare_digest(expected, authorization.signature):
            logger.debug(
                "Signature mismatch: access_key=%s got=%s",
                authorization.access_key,
                authorization.signature,
            )
            raise SignatureMismatchError("Signature does not match")

    def verify(
        self,
        *,
        method: str,
        uri: str,
        headers: HeaderSource,
        query_parameters: Iterable[tuple[str, str]] = (),
        content: RequestContent | None = None,
        now: datetime | None = None,
    ) -> VerifiedRequest:
        """Verify an incoming request.

        Args:
            method: HTTP method.
            uri: Absolute request URI (query string is ignored).
            headers: Raw request headers.
            query_parameters: Decoded query parameters.
            content: Request body; defaults to an empty body.
            now: Current time; defaults to the wall clock.

        Returns:
            VerifiedRequest carrying the credential and signing context.

        Raises:
            MalformedAuthorizationError: If the request carries no usable
                SigV4 authorization (reported as 401).
            ClockDriftExceededError: If the request time is out of window
                or a presigned request has expired.
            InvalidAuthorizationError: If the access key is unknown.
            SignatureMismatchError: If the signature does not match.
        """
        if isinstance(headers, Mapping):
            headers = dict(headers)
        else:
            headers = list(headers)
        content = content if content is not None else RequestContent()
        params = tuple(query_parameters)
        query = SigningQueryParameters.split(params)

        authorization_header = _first_header(headers, "authorization")
        if authorization_header:
            return self._verify_header(
                method, uri, headers, params, content, authorization_header, now
            )
        if query.is_presigned:
            return self._verify_presigned(
                method, uri, headers, query, content, now
            )
        raise MalformedAuthorizationError(
            "Request carries no SigV4 authorization",
            status=HTTPStatus.UNAUTHORIZED,
        )

    def _verify_header(
        self,
        method: str,
        uri: str,
        headers: HeaderSource,
        query_parameters: tuple[tuple[str, str], ...],
        content: RequestContent,
        authorization_header: str,
        now: datetime | None,
    ) -> VerifiedRequest:
        try:
            authorization = RequestAuthorization.parse(
                authorization_header,
                _first_header(headers, SECURITY_TOKEN_HEADER),
            )
        except MalformedAuthorizationError as e:
            logger.debug("Malformed Authorization header: %s", e)
            raise MalformedAuthorizationError(
                str(e), status=HTTPStatus.UNAUTHORIZED
            ) from e

        request_date = self._header_request_date(headers)
        credential = self._resolve_credential(authorization)
        request = SigningRequest(
            service_type=self.service_type(authorization.service_name),
            request_uri=uri,
            signing_headers=SigningHeaders.build(
                headers, authorization.signed_lowercase_headers
            ),
            query_parameters=query_parameters,
            region=authorization.region,
            request_date=request_date,
            http_method=method,
            credential=credential,
            max_clock_drift=self._max_clock_drift,
            request_content=content,
            double_url_encode=self._double_url_encode,
        )
        context = sign(request, now=now)
        self._compare(context, authorization)
        return VerifiedRequest(credential, context)

    @staticmethod
    def _header_request_date(headers: HeaderSource) -> datetime:
        value = _first_header(headers, DATE_HEADER)
        if value is None:
            raise MalformedAuthorizationError(
                "Missing x-amz-date header", status=HTTPStatus.UNAUTHORIZED
            )
        try:
            return from_request_time(value)
        except ValueError as e:
            logger.debug("Malformed x-amz-date: %s", value)
            raise MalformedAuthorizationError(
                f"Malformed x-amz-date: {value!r}"
            ) from e

    def _verify_presigned(
        self,
        method: str,
        uri: str,
        headers: HeaderSource,
        query: SigningQueryParameters,
        content: RequestContent,
        now: datetime | None,
    ) -> VerifiedRequest:
        authorization = query.to_request_authorization()
        request_date = query.request_date
        expiry = query.expiry
        if authorization is None or request_date is None or expiry is None:
            logger.debug(
                "Incomplete presigned parameters: %s",
                sorted(query.signing_parameters),
            )
            raise MalformedAuthorizationError(
                "Incomplete presigned request parameters"
            )

        current = as_utc(now) if now is not None else datetime.now(UTC)
        if current > expiry:
            logger.debug(
                "Presigned request expired. Expiry: %s Now: %s",
                expiry.isoformat(),
                current.isoformat(),
            )
            raise ClockDriftExceededError("Presigned request has expired")

        credential = self._resolve_credential(authorization)
        signed_headers = query.signing_parameters[X_AMZ_SIGNED_HEADERS]
        request = SigningRequest(
            service_type=self.service_type(authorization.service_name),
            request_uri=uri,
            signing_headers=SigningHeaders.from_signed_header_list(
                headers, signed_headers
            ),
            query_parameters=query.request_parameters,
            region=authorization.region,
            request_date=request_date,
            http_method=method,
            credential=credential,
            max_clock_drift=self._max_clock_drift,
            request_content=content,
            request_expiry=expiry,
            double_url_encode=self._double_url_encode,
        )
        context = presign(request, now=current)
        self._compare(context, authorization)
        return VerifiedRequest(credential, context)

    def verify_werkzeug(
        self, request: Request, *, now: datetime | None = None
    ) -> VerifiedRequest:
        """Verify a ``werkzeug.wrappers.Request``.

        Plain bodies are read through ``request.get_data`` (and cached on
        the request) so they can be hashed.  aws-chunked bodies are left in
        ``request.stream`` and must be read afterwards through
        ``VerifiedRequest.chunks``.
        """
        headers = list(request.headers.items())
        has_body = bool(request.content_length) or (
            "chunked" in (request.headers.get("Transfer-Encoding") or "")
        )
        content_type = detect_content_type(headers, has_body)
        body: bytes | None = None
        if content_type in (ContentType.STANDARD, ContentType.W3C_CHUNKED):
            body = request.get_data(cache=True)
        return self.verify(
            method=request.method,
            uri=_raw_request_url(request),
            headers=headers,
            query_parameters=request.args.items(multi=True),
            content=RequestContent(content_type, body),
            now=now,
        )
