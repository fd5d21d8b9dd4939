# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Canonical request construction.

The canonical request is the exact string whose hash is signed::

    <METHOD>\\n
    <canonical URI>\\n
    <canonical query string>\\n
    <canonical headers, one "name:value\\n" per header>\\n
    <signed header names joined by ";">\\n
    <payload hash>

Any deviation in encoding, ordering or whitespace handling produces a
different signature, so every rule here mirrors what AWS specifies.
"""

import re
import urllib.parse
from collections.abc import Iterable, Mapping, Sequence


_AWS_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)
_PERCENT_ESCAPE = re.compile(r"(%[0-9A-Fa-f]{2})")


# ---------------------------------------------------------------------------
# URI encoding (AWS-specific RFC 3986 subset)
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using AWS's rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - Every other UTF-8 byte is percent-encoded as %XX (uppercase hex)
    - Forward slashes are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _AWS_UNRESERVED or (byte == 0x2F and not encode_slash):
            result.append(chr(byte))
        else:
            result.append(f"%{byte:02X}")
    return "".join(result)


# ---------------------------------------------------------------------------
# Canonical URI
# ---------------------------------------------------------------------------


def _normalize_path(path: str) -> str:
    """Remove empty, ``.`` and ``..`` segments, keeping a trailing slash."""
    normalized: list[str] = []
    for part in path.split("/"):
        if part == "..":
            if normalized:
                normalized.pop()
        elif part not in (".", ""):
            normalized.append(part)
    result = "/" + "/".join(normalized)
    if normalized and path.endswith("/"):
        result += "/"
    return result


def _encode_keeping_escapes(path: str) -> str:
    """Encode a raw path, leaving valid ``%XX`` escapes as sent."""
    parts = _PERCENT_ESCAPE.split(path)
    # Odd indexes hold the escapes captured by the split pattern
    return "".join(
        part if i % 2 else uri_encode(part, encode_slash=False)
        for i, part in enumerate(parts)
    )


def canonical_uri(
    path: str, *, normalize_path: bool = True, double_encode: bool = False
) -> str:
    """Build canonical URI from a request path.

    * **S3** (``normalize_path=False``): the raw path is signed as sent.
      Existing ``%XX`` escapes are kept (``/a%2Fb`` stays ``/a%2Fb``) and
      only characters outside the unreserved set are encoded.  Double
      slashes and ``.``/``..`` segments are significant.
    * **Other services**: decode, normalise the path, encode once, and
      encode the result a second time when ``double_encode`` is set
      (``%3A`` becomes ``%253A``).

    Args:
        path: Request path, possibly percent-encoded.  Anything after
            ``?`` is ignored.
        normalize_path: Apply RFC 3986 path normalisation.
        double_encode: Apply the second encoding pass.

    Returns:
        URI-encoded canonical path.
    """
    path = path.split("?", 1)[0]
    if not path:
        return "/"

    if normalize_path:
        decoded = _normalize_path(urllib.parse.unquote(path))
        encoded = uri_encode(decoded, encode_slash=False)
    else:
        encoded = _encode_keeping_escapes(path)
    if double_encode:
        encoded = uri_encode(encoded, encode_slash=False)
    return encoded


# ---------------------------------------------------------------------------
# Canonical query string
# ---------------------------------------------------------------------------


def canonical_query_string(
    params: Iterable[tuple[str, str]], *, exclude: Iterable[str] = ()
) -> str:
    """Build canonical query string from decoded ``(name, value)`` pairs.

    Args:
        params: Query parameters, already URL-decoded.  Repeated names are
            allowed.
        exclude: Parameter names to leave out (e.g. ``X-Amz-Signature``).

    Returns:
        Canonical query string (encoded, sorted by name then value).
    """
    excluded = frozenset(exclude)
    encoded = sorted(
        (uri_encode(name), uri_encode(value))
        for name, value in params
        if name not in excluded
    )
    return "&".join(f"{name}={value}" for name, value in encoded)


def parse_query_string(query: str) -> list[tuple[str, str]]:
    """Split a raw query string into decoded ``(name, value)`` pairs.

    ``+`` is kept literally: AWS clients encode spaces as ``%20``.
    """
    if not query:
        return []
    pairs: list[tuple[str, str]] = []
    for part in query.split("&"):
        if not part:
            continue
        name, _, value = part.partition("=")
        pairs.append((urllib.parse.unquote(name), urllib.parse.unquote(value)))
    return pairs


def encode_query_string(params: Iterable[tuple[str, str]]) -> str:
    """Encode pairs into a query string using the canonical rules."""
    return "&".join(
        f"{uri_encode(name)}={uri_encode(value)}" for name, value in params
    )


# ---------------------------------------------------------------------------
# Canonical headers
# ---------------------------------------------------------------------------


def canonical_header_value(value: str) -> str:
    """Trim a header value and collapse sequential whitespace."""
    return " ".join(value.split())


def canonical_headers(headers: Mapping[str, Sequence[str]]) -> str:
    """Build canonical headers string.

    Args:
        headers: Lower-cased header name to its values, in arrival order.

    Returns:
        One ``name:value1,value2\\n`` line per header, sorted by name.
    """
    lines: list[str] = []
    for name in sorted(headers):
        values = ",".join(canonical_header_value(v) for v in headers[name])
        lines.append(f"{name}:{values}\n")
    return "".join(lines)


def signed_headers_string(names: Iterable[str]) -> str:
    """Sorted, ``;``-joined lower-cased header names."""
    return ";".join(sorted(name.lower() for name in names))


def build_canonical_request(
    *,
    method: str,
    uri: str,
    query: str,
    headers: Mapping[str, Sequence[str]],
    payload_hash: str,
) -> tuple[str, str]:
    """Build the canonical request string.

    Args:
        method: HTTP method.
        uri: Canonical URI (see ``canonical_uri``).
        query: Canonical query string (see ``canonical_query_string``).
        headers: Lower-cased headers to sign.
        payload_hash: Hex payload hash or a sentinel such as
            ``UNSIGNED-PAYLOAD``.

    Returns:
        Tuple of (canonical request, signed headers string).
    """
    signed_headers = signed_headers_string(headers)
    canonical_request = "\n".join(
        [
            method.upper(),
            uri,
            query,
            canonical_headers(headers),
            signed_headers,
            payload_hash,
        ]
    )
    return canonical_request, signed_headers
