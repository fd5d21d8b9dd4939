# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Request authorization codec.

Two representations carry the same signing metadata:

* the ``Authorization`` header::

    AWS4-HMAC-SHA256 Credential=<access>/<date>/<region>/<service>/aws4_request,
    SignedHeaders=<h1;h2;...>, Signature=<hex>

* the presigned query parameters ``X-Amz-Algorithm``, ``X-Amz-Credential``,
  ``X-Amz-Date``, ``X-Amz-Expires``, ``X-Amz-SignedHeaders``,
  ``X-Amz-Signature`` and, for session credentials,
  ``X-Amz-Security-Token``.

Both decode into a ``RequestAuthorization``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sigv4proxy.signing.errors import MalformedAuthorizationError
from sigv4proxy.signing.keys import ALGORITHM, SCOPE_TERMINATOR
from sigv4proxy.signing.timestamps import from_request_time


logger = logging.getLogger(__name__)

_SIGNATURE_RE = re.compile(r"[0-9a-f]{64}")
_DATE_STAMP_RE = re.compile(r"\d{8}")

#: Largest X-Amz-Expires AWS accepts (7 days).
MAX_EXPIRES_SECONDS = 604800

X_AMZ_ALGORITHM = "X-Amz-Algorithm"
X_AMZ_CREDENTIAL = "X-Amz-Credential"
X_AMZ_DATE = "X-Amz-Date"
X_AMZ_EXPIRES = "X-Amz-Expires"
X_AMZ_SIGNED_HEADERS = "X-Amz-SignedHeaders"
X_AMZ_SIGNATURE = "X-Amz-Signature"
X_AMZ_SECURITY_TOKEN = "X-Amz-Security-Token"

SIGNING_QUERY_PARAMETERS = frozenset(
    {
        X_AMZ_ALGORITHM,
        X_AMZ_CREDENTIAL,
        X_AMZ_DATE,
        X_AMZ_EXPIRES,
        X_AMZ_SIGNED_HEADERS,
        X_AMZ_SIGNATURE,
        X_AMZ_SECURITY_TOKEN,
    }
)


def _split_credential(credential: str) -> tuple[str, str, str] | None:
    """Split ``access/date/region/service/aws4_request``.

    Returns:
        Tuple of (access key, region, key path), or None if the value
        does not have exactly five non-empty components.
    """
    parts = credential.split("/")
    if len(parts) != 5 or not all(parts):
        return None
    access_key, _date, region, _service, _terminator = parts
    return access_key, region, "/".join(parts[1:])


@dataclass(frozen=True)
class RequestAuthorization:
    """Parsed SigV4 signing metadata.

    Attributes:
        authorization: Header form of the authorization.
        access_key: Access key ID from the credential.
        region: Region from the credential scope.
        key_path: Credential scope (date/region/service/aws4_request).
        signed_lowercase_headers: Signed header names, in listed order.
        signature: Hex signature.
        expiry: Expiry of a presigned request, None for header auth.
        security_token: Session token, if session credentials were used.
    """

    authorization: str
    access_key: str
    region: str
    key_path: str
    signed_lowercase_headers: tuple[str, ...]
    signature: str
    expiry: datetime | None = None
    security_token: str | None = None

    @classmethod
    def parse(
        cls, authorization: str, security_token: str | None = None
    ) -> RequestAuthorization:
        """Parse an ``Authorization`` header value.

        Components may appear in any order, separated by commas with
        optional whitespace.

        Args:
            authorization: Full header value.
            security_token: Session token sent alongside the header.

        Returns:
            RequestAuthorization.

        Raises:
            MalformedAuthorizationError: If the algorithm is not SigV4 or
                the credential, signed-header list or signature is missing
                or not in the expected format.
        """
        algorithm, _, rest = authorization.strip().partition(" ")
        if algorithm != ALGORITHM:
            raise MalformedAuthorizationError(
                f"Unsupported authorization algorithm: {algorithm!r}"
            )

        components: dict[str, str] = {}
        for part in rest.split(","):
            name, sep, value = part.strip().partition("=")
            if sep:
                components[name] = value.strip()

        credential = components.get("Credential", "")
        split = _split_credential(credential)
        if split is None:
            raise MalformedAuthorizationError(
                f"Malformed credential scope: {credential!r}"
            )
        signed_headers = components.get("SignedHeaders", "")
        if not signed_headers:
            raise MalformedAuthorizationError("Missing SignedHeaders")
        signature = components.get("Signature", "")
        if not signature:
            raise MalformedAuthorizationError("Missing Signature")

        access_key, region, scope = split
        return cls(
            authorization=authorization,
            access_key=access_key,
            region=region,
            key_path=scope,
            signed_lowercase_headers=tuple(
                h.lower() for h in signed_headers.split(";") if h
            ),
            signature=signature,
            security_token=security_token,
        )

    @property
    def date_stamp(self) -> str:
        """Date from the credential scope (YYYYMMDD)."""
        return self.key_path.split("/")[0]

    @property
    def service_name(self) -> str:
        """Service signing name from the credential scope."""
        parts = self.key_path.split("/")
        return parts[2] if len(parts) == 4 else ""

    @property
    def signed_headers(self) -> str:
        """Signed header names joined by ``;``."""
        return ";".join(self.signed_lowercase_headers)

    def is_valid(self) -> bool:
        """True if scope, signed-header list and signature are well-formed.

        An invalid instance must never be used to authorize a request.
        """
        scope = self.key_path.split("/")
        return (
            bool(self.access_key)
            and bool(self.region)
            and len(scope) == 4
            and _DATE_STAMP_RE.fullmatch(scope[0]) is not None
            and scope[1] == self.region
            and bool(scope[2])
            and scope[3] == SCOPE_TERMINATOR
            and bool(self.signed_lowercase_headers)
            and all(self.signed_lowercase_headers)
            and _SIGNATURE_RE.fullmatch(self.signature) is not None
        )

    def to_authorization_header(self) -> str:
        """Serialize back to the ``Authorization`` header grammar."""
        return (
            f"{ALGORITHM} "
            f"Credential={self.access_key}/{self.key_path}, "
            f"SignedHeaders={self.signed_headers}, "
            f"Signature={self.signature}"
        )


@dataclass(frozen=True)
class SigningQueryParameters:
    """Query parameters split into presigned signing fields and the rest.

    Attributes:
        signing_parameters: The ``X-Amz-*`` presigned parameters.
        request_parameters: All other parameters, in original order.
    """

    signing_parameters: dict[str, str]
    request_parameters: tuple[tuple[str, str], ...]

    @classmethod
    def split(cls, params: Iterable[tuple[str, str]]) -> SigningQueryParameters:
        """Separate the presigned signing fields from ordinary parameters.

        If a signing field repeats, the first occurrence wins.
        """
        signing: dict[str, str] = {}
        request: list[tuple[str, str]] = []
        for name, value in params:
            if name in SIGNING_QUERY_PARAMETERS:
                signing.setdefault(name, value)
            else:
                request.append((name, value))
        return cls(signing, tuple(request))

    @property
    def is_presigned(self) -> bool:
        """True if a credential is carried in the query."""
        return X_AMZ_CREDENTIAL in self.signing_parameters

    @property
    def request_date(self) -> datetime | None:
        """Parsed ``X-Amz-Date``, or None if absent or malformed."""
        value = self.signing_parameters.get(X_AMZ_DATE)
        if value is None:
            return None
        try:
            return from_request_time(value)
        except ValueError:
            logger.debug("Malformed X-Amz-Date: %s", value)
            return None

    @property
    def expiry(self) -> datetime | None:
        """``X-Amz-Date`` plus ``X-Amz-Expires``, or None if unavailable.

        ``X-Amz-Expires`` outside 1 to 604800 seconds counts as malformed.
        """
        request_date = self.request_date
        expires = self.signing_parameters.get(X_AMZ_EXPIRES)
        if request_date is None or expires is None:
            return None
        try:
            seconds = int(expires)
        except ValueError:
            logger.debug("Malformed X-Amz-Expires: %s", expires)
            return None
        if not 1 <= seconds <= MAX_EXPIRES_SECONDS:
            logger.debug("X-Amz-Expires out of range: %s", expires)
            return None
        try:
            return request_date + timedelta(seconds=seconds)
        except OverflowError:
            logger.debug("X-Amz-Expires overflows X-Amz-Date: %s", expires)
            return None

    def to_request_authorization(self) -> RequestAuthorization | None:
        """Build a RequestAuthorization from the presigned fields.

        Returns:
            RequestAuthorization, or None when the credential, signed
            headers or signature are missing or malformed.  Callers must
            treat None as a bad request.
        """
        params = self.signing_parameters
        if params.get(X_AMZ_ALGORITHM, ALGORITHM) != ALGORITHM:
            return None
        split = _split_credential(params.get(X_AMZ_CREDENTIAL, ""))
        signed_headers = params.get(X_AMZ_SIGNED_HEADERS, "")
        signature = params.get(X_AMZ_SIGNATURE, "")
        if split is None or not signed_headers or not signature:
            return None

        access_key, region, scope = split
        authorization = (
            f"{ALGORITHM} Credential={access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return RequestAuthorization(
            authorization=authorization,
            access_key=access_key,
            region=region,
            key_path=scope,
            signed_lowercase_headers=tuple(
                h.lower() for h in signed_headers.split(";") if h
            ),
            signature=signature,
            expiry=self.expiry,
            security_token=params.get(X_AMZ_SECURITY_TOKEN),
        )
