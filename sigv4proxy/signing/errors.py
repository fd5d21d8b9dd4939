# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error taxonomy for SigV4 signing and verification.

Every ``SigningError`` is terminal for the request being processed and
carries the HTTP status the proxy should answer with.  Only 400 and 401
originate from this package.
"""

from http import HTTPStatus


class SigningError(Exception):
    """Base exception for signing and verification failures.

    Attributes:
        status: HTTP status to report to the client.
    """

    default_status: HTTPStatus = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str, *, status: HTTPStatus | None = None):
        super().__init__(message)
        self.status = status if status is not None else self.default_status


class ClockDriftExceededError(SigningError):
    """Request timestamp is outside the allowed window around now."""


class PresignedExpiryInvalidError(SigningError):
    """Presigned expiry is not after the request date or exceeds 7 days."""


class MalformedAuthorizationError(SigningError):
    """Authorization value cannot be parsed into its components.

    Reported as 400 for values this package produced and as 401 when the
    value came from an untrusted client.
    """


class InvalidAuthorizationError(SigningError):
    """Authorization parsed but is not structurally valid."""

    default_status = HTTPStatus.UNAUTHORIZED


class SignatureMismatchError(SigningError):
    """Computed signature does not match the one supplied by the client."""

    default_status = HTTPStatus.UNAUTHORIZED


class MalformedChunkError(SigningError):
    """aws-chunked body framing is invalid."""


class ChunkSessionClosedError(RuntimeError):
    """A chunk signature was requested after the session was closed."""
