# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Rolling signatures for aws-chunked (streamed) request bodies.

Each chunk of a ``STREAMING-AWS4-HMAC-SHA256-PAYLOAD`` body carries a
signature over the chunk's hash chained to the previous signature; the
first chunk chains to the request (seed) signature::

    HMAC(signing_key,
         "AWS4-HMAC-SHA256-PAYLOAD" \\n
         <request time> \\n
         <key path> \\n
         <previous signature> \\n
         <sha256 of empty string> \\n
         <sha256 of chunk data>)

A session is owned by exactly one in-flight request and advanced by the
single reader of that request's body, in chunk order.  It is not locked.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import BinaryIO

from sigv4proxy.signing.errors import (
    ChunkSessionClosedError,
    MalformedChunkError,
    SignatureMismatchError,
)
from sigv4proxy.signing.keys import compute_signature
from sigv4proxy.signing.timestamps import to_request_time


logger = logging.getLogger(__name__)

CHUNK_ALGORITHM = "AWS4-HMAC-SHA256-PAYLOAD"

_SHA256_EMPTY = hashlib.sha256(b"").hexdigest()

# Chunk header line: {hex};chunk-signature={sig}\r\n
_CHUNK_HEADER_RE = re.compile(
    rb"(?P<hex_size>[0-9a-fA-F]+);chunk-signature=(?P<sig>[0-9a-f]+)\r\n"
)

# Longest chunk header line accepted before the CRLF.
_MAX_CHUNK_HEADER = 4096


@dataclass(frozen=True)
class ChunkSigner:
    """Stateless chunk signature function for one request.

    Attributes:
        request_date: Claimed request time (``x-amz-date``).
        key_path: Credential scope of the request.
        signing_key: Derived signing key.  Excluded from repr.
    """

    request_date: datetime
    key_path: str
    signing_key: bytes = field(repr=False)

    def string_to_sign(self, payload_hash: str, previous_signature: str) -> str:
        """Build the string to sign for one chunk."""
        return "\n".join(
            [
                CHUNK_ALGORITHM,
                to_request_time(self.request_date),
                self.key_path,
                previous_signature,
                _SHA256_EMPTY,
                payload_hash,
            ]
        )

    def sign_chunk(self, payload_hash: str, previous_signature: str) -> str:
        """Compute the signature of a chunk given its hex SHA-256."""
        return compute_signature(
            self.signing_key,
            self.string_to_sign(payload_hash, previous_signature),
        )


class SessionState(Enum):
    """Lifecycle of a ChunkSigningSession."""

    #: Holds the request (seed) signature; no chunk signed yet.
    SEEDED = "seeded"
    #: At least one chunk signed; holds the most recent chunk signature.
    ACTIVE = "active"
    #: Body fully consumed; no further chunks accepted.
    CLOSED = "closed"


class ChunkSigningSession:
    """Chain of chunk signatures seeded from the request signature.

    State machine::

        SEEDED ──next_signature──> ACTIVE ──next_signature──> ACTIVE
           │                          │
           └────────close()───────────┴──> CLOSED
    """

    def __init__(self, chunk_signer: ChunkSigner, seed_signature: str) -> None:
        self._chunk_signer = chunk_signer
        self._previous_signature = seed_signature
        self._state = SessionState.SEEDED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def previous_signature(self) -> str:
        """Seed signature, or the most recent chunk signature."""
        return self._previous_signature

    def next_signature(self, chunk_payload_hash: str) -> str:
        """Sign the next chunk and advance the chain.

        Args:
            chunk_payload_hash: Hex SHA-256 of the chunk data.  The
                terminal zero-length chunk uses the empty-string hash.

        Returns:
            Hex signature of this chunk.

        Raises:
            ChunkSessionClosedError: If the session is closed.
        """
        if self._state is SessionState.CLOSED:
            raise ChunkSessionClosedError("Chunk signing session is closed")
        signature = self._chunk_signer.sign_chunk(
            chunk_payload_hash, self._previous_signature
        )
        self._previous_signature = signature
        self._state = SessionState.ACTIVE
        return signature

    def verify_chunk(self, data: bytes, expected_signature: str) -> str:
        """Sign a chunk's data and compare with the client's signature.

        Args:
            data: Raw chunk data.
            expected_signature: ``chunk-signature`` sent by the client.

        Returns:
            The verified signature.

        Raises:
            SignatureMismatchError: If the signatures differ.
            ChunkSessionClosedError: If the session is closed.
        """
        signature = self.next_signature(hashlib.sha256(data).hexdigest())
        if not hmac.compare_digest(signature, expected_signature):
            logger.debug(
                "Chunk signature mismatch: size=%d expected=%s",
                len(data),
                expected_signature,
            )
            raise SignatureMismatchError("Chunk signature does not match")
        return signature

    def close(self) -> None:
        """Terminate the session.  Further chunks are rejected."""
        self._state = SessionState.CLOSED


class AwsChunkedReader:
    """Decode and verify an aws-chunked request body.

    Reads frames of the form ``<hex size>;chunk-signature=<sig>\\r\\n
    <data>\\r\\n`` from a binary stream, verifying each signature against
    the session, until the zero-size terminal chunk.  The session is
    closed once the terminal chunk is verified.  Trailing headers after
    the terminal chunk are not read.
    """

    def __init__(self, stream: BinaryIO, session: ChunkSigningSession) -> None:
        self._stream = stream
        self._session = session
        self._done = False

    @property
    def done(self) -> bool:
        """True once the terminal chunk has been verified."""
        return self._done

    def _read_exact(self, size: int) -> bytes:
        data = b""
        while len(data) < size:
            block = self._stream.read(size - len(data))
            if not block:
                raise MalformedChunkError(
                    f"Body ended inside chunk: got {len(data)} of {size} bytes"
                )
            data += block
        return data

    def _read_header(self) -> tuple[int, str]:
        line = self._stream.readline(_MAX_CHUNK_HEADER)
        m = _CHUNK_HEADER_RE.fullmatch(line)
        if not m:
            raise MalformedChunkError(f"Malformed chunk header: {line[:80]!r}")
        return int(m.group("hex_size"), 16), m.group("sig").decode("ascii")

    def read_chunk(self) -> bytes | None:
        """Read and verify the next chunk.

        Returns:
            Chunk data (empty for the terminal chunk), or None once the
            body is complete.

        Raises:
            MalformedChunkError: On framing errors.
            SignatureMismatchError: If a chunk signature does not match.
        """
        if self._done:
            return None

        size, signature = self._read_header()
        data = self._read_exact(size)
        if size:
            if self._read_exact(2) != b"\r\n":
                raise MalformedChunkError("Chunk data not followed by CRLF")

        self._session.verify_chunk(data, signature)
        if not size:
            self._session.close()
            self._done = True
        return data

    def __iter__(self) -> Iterator[bytes]:
        """Yield verified, non-empty chunk data until the terminal chunk."""
        while (data := self.read_chunk()) is not None:
            if data:
                yield data

    def read(self) -> bytes:
        """Read and verify the whole body, returning the decoded payload."""
        return b"".join(self)
