# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Value types shared by the signing modules."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, BinaryIO


if TYPE_CHECKING:
    from sigv4proxy.signing.authorization import RequestAuthorization
    from sigv4proxy.signing.chunks import ChunkSigningSession


_READ_BLOCK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Credential:
    """AWS credential supplied by the caller for a single request.

    Attributes:
        access_key: Access key ID.
        secret_key: Secret access key.  Never logged or shown in repr.
        session_token: STS session token for temporary credentials.
    """

    access_key: str
    secret_key: str = field(repr=False)
    session_token: str | None = field(default=None, repr=False)


class SigningTrait(Enum):
    """Capabilities of a target service that change how it is signed."""

    #: Use the S3 flavour of SigV4 (no path normalisation, content hash
    #: header, streaming payloads).
    S3V4_SIGNER = "s3v4-signer"

    #: Payload is streamed without buffering; trust the client's
    #: ``x-amz-content-sha256`` instead of hashing the body.
    STREAM_CONTENT = "stream-content"


@dataclass(frozen=True)
class SigningServiceType:
    """Target service: its signing name and traits."""

    service_name: str
    traits: frozenset[SigningTrait] = frozenset()

    def has_trait(self, trait: SigningTrait) -> bool:
        return trait in self.traits


S3 = SigningServiceType(
    "s3",
    frozenset({SigningTrait.S3V4_SIGNER, SigningTrait.STREAM_CONTENT}),
)
STS = SigningServiceType("sts")


class ContentType(Enum):
    """How the request body is framed on the wire."""

    AWS_CHUNKED = "aws-chunked"
    AWS_CHUNKED_IN_W3C_CHUNKED = "aws-chunked-in-w3c-chunked"
    W3C_CHUNKED = "w3c-chunked"
    STANDARD = "standard"
    EMPTY = "empty"

    @property
    def is_aws_chunked(self) -> bool:
        """True if the body carries per-chunk SigV4 signatures."""
        return self in (
            ContentType.AWS_CHUNKED,
            ContentType.AWS_CHUNKED_IN_W3C_CHUNKED,
        )


@dataclass(frozen=True)
class RequestContent:
    """Request body as seen by the signer.

    Attributes:
        content_type: Body framing.
        body: Raw body bytes, a readable binary stream, or None.
    """

    content_type: ContentType = ContentType.EMPTY
    body: bytes | BinaryIO | None = None

    def payload_hash(self) -> str:
        """Hex SHA-256 of the body.

        Streams are read to the end and rewound when seekable so the
        caller can still forward them.
        """
        digest = hashlib.sha256()
        if isinstance(self.body, bytes):
            digest.update(self.body)
        elif self.body is not None:
            stream = self.body
            start = stream.tell() if stream.seekable() else None
            while block := stream.read(_READ_BLOCK_SIZE):
                digest.update(block)
            if start is not None:
                stream.seek(start)
        return digest.hexdigest()


@dataclass(frozen=True)
class SigningContext:
    """Result of a sign/presign call.

    Attributes:
        request_authorization: Parsed authorization that was produced.
        chunk_signing_session: Rolling signature session for aws-chunked
            bodies, seeded with the request signature.
        content_hash: Client-supplied ``x-amz-content-sha256``, if any.
        signing_uri: URI the signature covers (the full presigned URL for
            presigned requests).
    """

    request_authorization: RequestAuthorization
    chunk_signing_session: ChunkSigningSession
    content_hash: str | None
    signing_uri: str
