# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""SigV4 signing subsystem.

Provides byte-exact AWS Signature Version 4 signing for a proxy:
- Signing-key derivation and canonical request construction
- Header (sign) and query-string (presign) authorization
- Generic, S3 and legacy S3 signer variants
- Rolling chunk signatures for aws-chunked bodies
- Verification of incoming signed requests
"""

from sigv4proxy.signing.authorization import (
    RequestAuthorization,
    SigningQueryParameters,
)
from sigv4proxy.signing.chunks import (
    AwsChunkedReader,
    ChunkSigner,
    ChunkSigningSession,
    SessionState,
)
from sigv4proxy.signing.errors import (
    ChunkSessionClosedError,
    ClockDriftExceededError,
    InvalidAuthorizationError,
    MalformedAuthorizationError,
    MalformedChunkError,
    PresignedExpiryInvalidError,
    SignatureMismatchError,
    SigningError,
)
from sigv4proxy.signing.headers import SigningHeaders
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
    SigningContext,
    SigningServiceType,
    SigningTrait,
)
from sigv4proxy.signing.verifier import (
    RequestVerifier,
    VerifiedRequest,
)


__all__ = [
    # authorization
    "RequestAuthorization",
    "SigningQueryParameters",
    # chunks
    "AwsChunkedReader",
    "ChunkSigner",
    "ChunkSigningSession",
    "SessionState",
    # errors
    "ChunkSessionClosedError",
    "ClockDriftExceededError",
    "InvalidAuthorizationError",
    "MalformedAuthorizationError",
    "MalformedChunkError",
    "PresignedExpiryInvalidError",
    "SignatureMismatchError",
    "SigningError",
    # headers
    "SigningHeaders",
    # signer
    "MAX_PRESIGNED_REQUEST_AGE",
    "SigningRequest",
    "enforce_max_drift",
    "presign",
    "sign",
    "signing_key",
    # types
    "S3",
    "STS",
    "ContentType",
    "Credential",
    "RequestContent",
    "SigningContext",
    "SigningServiceType",
    "SigningTrait",
    # verifier
    "RequestVerifier",
    "VerifiedRequest",
]
