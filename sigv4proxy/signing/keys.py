# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 signing-key derivation and HMAC helpers.

The signing key is derived from the secret key through an HMAC-SHA256
chain over the credential scope::

    kDate    = HMAC("AWS4" + secret, date)
    kRegion  = HMAC(kDate, region)
    kService = HMAC(kRegion, service)
    kSigning = HMAC(kService, "aws4_request")

Verification must use the date the requester claimed, not the wall clock,
so that the proxy reproduces exactly what the client computed.  Keys are
recomputed per request and never cached or logged.
"""

import hashlib
import hmac
from datetime import datetime

from sigv4proxy.signing.timestamps import to_date_stamp
from sigv4proxy.signing.types import Credential


ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"


def hmac_sha256(key: bytes, msg: str | bytes) -> bytes:
    """HMAC-SHA256 helper."""
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).digest()


def sha256_hex(data: str | bytes) -> str:
    """Hex SHA-256 of a string (UTF-8) or bytes."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def derive_signing_key(
    secret_key: str, date_stamp: str, region: str, service: str
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: AWS secret access key.
        date_stamp: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service signing name.

    Returns:
        Derived signing key bytes.
    """
    k_date = hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


def signing_key(
    credential: Credential,
    request_date: datetime,
    region: str,
    service_name: str,
) -> bytes:
    """Derive the signing key for a request from its claimed date."""
    return derive_signing_key(
        credential.secret_key, to_date_stamp(request_date), region, service_name
    )


def key_path(request_date: datetime, region: str, service_name: str) -> str:
    """Credential scope: ``date/region/service/aws4_request``."""
    return "/".join(
        [to_date_stamp(request_date), region, service_name, SCOPE_TERMINATOR]
    )


def build_string_to_sign(
    request_time: str, scope: str, canonical_request: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        request_time: ISO 8601 basic timestamp (``x-amz-date`` format).
        scope: Credential scope (date/region/service/aws4_request).
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [ALGORITHM, request_time, scope, sha256_hex(canonical_request)]
    )


def compute_signature(key: bytes, string_to_sign: str) -> str:
    """Hex-encoded HMAC-SHA256 of the string to sign."""
    return hmac_sha256(key, string_to_sign).hex()
