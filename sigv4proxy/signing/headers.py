# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Selection of the headers that participate in a signature.

A client lists the headers it signed in ``SignedHeaders``; only those are
fed back into the canonical request when the proxy re-computes the
signature.  Header names are case-insensitive, so everything is keyed by
the lower-cased name.  Repeated headers keep all their values in arrival
order.
"""

from collections.abc import Iterable, Iterator, Mapping, Sequence


#: Signing ``user-agent`` marks a client that uses the legacy S3 signer.
_LEGACY_MARKER_HEADER = "user-agent"

HeaderSource = Mapping[str, str | Sequence[str]] | Iterable[tuple[str, str]]


def _iter_header_pairs(headers: HeaderSource) -> Iterator[tuple[str, str]]:
    """Flatten a mapping or pair iterable into ``(name, value)`` pairs."""
    if isinstance(headers, Mapping):
        for name, value in headers.items():
            if isinstance(value, str):
                yield name, value
            else:
                for item in value:
                    yield name, item
    else:
        yield from headers


class SigningHeaders:
    """Lower-cased, ordered subset of request headers to sign."""

    __slots__ = ("_headers",)

    def __init__(self, headers: Mapping[str, Sequence[str]]) -> None:
        self._headers: dict[str, tuple[str, ...]] = {
            name.lower(): tuple(values) for name, values in headers.items()
        }

    @classmethod
    def build(
        cls, request_headers: HeaderSource, headers_to_sign: Iterable[str]
    ) -> "SigningHeaders":
        """Select the signed headers from the raw request headers.

        Args:
            request_headers: All request headers, either a mapping (values
                may be lists) or ``(name, value)`` pairs.
            headers_to_sign: Header names the client signed (any case).

        Returns:
            SigningHeaders keyed by lower-cased name.  Headers named in
            ``headers_to_sign`` but absent from the request are skipped.
        """
        wanted = {name.strip().lower() for name in headers_to_sign}
        wanted.discard("")
        selected: dict[str, list[str]] = {}
        for name, value in _iter_header_pairs(request_headers):
            lower = name.lower()
            if lower in wanted:
                selected.setdefault(lower, []).append(value)
        return cls(selected)

    @classmethod
    def from_signed_header_list(
        cls, request_headers: HeaderSource, signed_headers: str
    ) -> "SigningHeaders":
        """Build from a ``SignedHeaders`` value such as ``host;x-amz-date``."""
        return cls.build(request_headers, signed_headers.split(";"))

    def has_header_to_sign(self, name: str) -> bool:
        return name.lower() in self._headers

    def get_first(self, name: str) -> str | None:
        """Return the first value of a header, or None if not signed."""
        values = self._headers.get(name.lower())
        if not values:
            return None
        return values[0]

    def lowercase_headers_to_sign(
        self,
    ) -> Iterator[tuple[str, tuple[str, ...]]]:
        """Iterate ``(lower-cased name, values)`` in insertion order."""
        return iter(self._headers.items())

    @property
    def is_legacy(self) -> bool:
        """True if the client signed ``user-agent`` (legacy S3 signer)."""
        return _LEGACY_MARKER_HEADER in self._headers

    def __len__(self) -> int:
        return len(self._headers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_header_to_sign(name)

    def __repr__(self) -> str:
        return f"SigningHeaders({sorted(self._headers)!r})"
