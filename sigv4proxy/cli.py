# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""sigv4proxy CLI: multi-command entry point.

Provides ``sigv4proxy <command>`` for creating configuration and signing
requests from the shell.  Running ``sigv4proxy`` with no arguments prints
version and usage information.

Subcommands:

* ``init``    create a stub config file
* ``presign`` print a presigned URL
* ``sign``    print the headers that sign a request

Credentials come from the ``credentials`` section of the config, or from
``AWS_ACCESS_KEY_ID``, ``AWS_SECRET_ACCESS_KEY`` and ``AWS_SESSION_TOKEN``.
"""

from __future__ import annotations

import argparse
import os
import sys
import urllib.parse
from datetime import UTC, datetime, timedelta
from pathlib import Path

from sigv4proxy import __version__
from sigv4proxy.config import ConfigError, SigningConfig, get_config_path
from sigv4proxy.dotenv_loader import load_dotenv_once
from sigv4proxy.logging import SecretFilter, configure_logging, get_logger
from sigv4proxy.signing.canonical import parse_query_string
from sigv4proxy.signing.errors import SigningError
from sigv4proxy.signing.headers import SigningHeaders
from sigv4proxy.signing.signer import SigningRequest, presign, sign
from sigv4proxy.signing.signers import CONTENT_SHA256_HEADER
from sigv4proxy.signing.timestamps import to_request_time
from sigv4proxy.signing.types import (
    ContentType,
    Credential,
    RequestContent,
    SigningTrait,
)


logger = get_logger(__name__)

# Known subcommand names.
_SUBCOMMANDS = frozenset({"init", "presign", "sign"})

_DEFAULT_EXPIRES_SECONDS = 3600

_USAGE = """\
usage: sigv4proxy <command> [args]

commands:
  init      Create a stub config file
  presign   Print a presigned URL
  sign      Print the headers that sign a request

Run 'sigv4proxy <command> --help' for command-specific help.\
"""


class CredentialsError(Exception):
    """No credential available for signing."""


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file.

    Creates ``~/.config/sigv4proxy/sigv4proxy.yaml`` with a commented
    template if the file does not already exist.

    Args:
        argv: Extra arguments (currently unused).

    Returns:
        Exit code (always 0).
    """
    config_path = get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── Shared helpers ──────────────────────────────────────────────────


def _load_config(config_path: Path | None) -> SigningConfig:
    """Load the config file, falling back to defaults when none exists.

    An explicitly named file must exist.
    """
    if config_path is None:
        default_path = get_config_path()
        if not default_path.exists():
            load_dotenv_once()
            return SigningConfig()
        config_path = default_path
    return SigningConfig.from_yaml(config_path)


def _resolve_credential(config: SigningConfig) -> Credential:
    """Return the configured credential, else one from the environment."""
    if config.credential is not None:
        return config.credential

    access_key = os.environ.get("AWS_ACCESS_KEY_ID")
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
    if not access_key or not secret_key:
        raise CredentialsError(
            "No credentials: set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY "
            "or add a 'credentials' section to the config"
        )
    session_token = os.environ.get("AWS_SESSION_TOKEN") or None
    SecretFilter.register_secret(secret_key)
    SecretFilter.register_secret(session_token)
    return Credential(access_key, secret_key, session_token)


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(
            f"Header must be 'Name: value', got {value!r}"
        )
    return name.strip(), header_value.strip()


def _common_parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("url", help="Absolute request URL")
    parser.add_argument(
        "--method", "-X", default="GET", help="HTTP method (default: GET)"
    )
    parser.add_argument(
        "--region", help="Signing region (default: from config)"
    )
    parser.add_argument(
        "--service", default="s3", help="Signing service name (default: s3)"
    )
    parser.add_argument(
        "--header",
        "-H",
        action="append",
        default=[],
        type=_parse_header,
        help="Extra header to sign, as 'Name: value' (repeatable)",
    )
    parser.add_argument(
        "--config", type=Path, help="Config file (default: XDG location)"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    return parser


def _build_request(
    args: argparse.Namespace,
    config: SigningConfig,
    credential: Credential,
    *,
    content: RequestContent,
    request_expiry: datetime | None = None,
    now: datetime,
) -> SigningRequest:
    parts = urllib.parse.urlsplit(args.url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"URL must be absolute: {args.url!r}")

    headers: list[tuple[str, str]] = [("host", parts.netloc)]
    headers.extend(args.header)
    return SigningRequest(
        service_type=config.service_type(args.service),
        request_uri=args.url,
        signing_headers=SigningHeaders.build(
            headers, [name for name, _ in headers]
        ),
        query_parameters=tuple(parse_query_string(parts.query)),
        region=args.region or config.default_region,
        request_date=now,
        http_method=args.method,
        credential=credential,
        max_clock_drift=config.max_clock_drift,
        request_content=content,
        request_expiry=request_expiry,
        double_url_encode=config.double_url_encode,
    )


def _setup(args: argparse.Namespace) -> tuple[SigningConfig, Credential]:
    config = _load_config(args.config)
    configure_logging(level="DEBUG" if args.debug else config.log_level)
    return config, _resolve_credential(config)


# ── presign subcommand ──────────────────────────────────────────────


def cmd_presign(argv: list[str]) -> int:
    """Print a presigned URL.

    Args:
        argv: Command arguments (see ``sigv4proxy presign --help``).

    Returns:
        Exit code (0 on success, 1 on error).
    """
    parser = _common_parser("sigv4proxy presign", "Print a presigned URL.")
    parser.add_argument(
        "--expires",
        type=int,
        default=_DEFAULT_EXPIRES_SECONDS,
        help=(
            "Validity in seconds, at most 604800 "
            f"(default: {_DEFAULT_EXPIRES_SECONDS})"
        ),
    )
    args = parser.parse_args(argv)

    try:
        config, credential = _setup(args)
        now = datetime.now(UTC).replace(microsecond=0)
        request = _build_request(
            args,
            config,
            credential,
            content=RequestContent(),
            request_expiry=now + timedelta(seconds=args.expires),
            now=now,
        )
        context = presign(request, now=now)
    except (ConfigError, CredentialsError, SigningError, ValueError) as e:
        logger.error("%s", e)
        return 1

    print(context.signing_uri)
    return 0


# ── sign subcommand ─────────────────────────────────────────────────


def cmd_sign(argv: list[str]) -> int:
    """Print the headers that sign a request.

    Args:
        argv: Command arguments (see ``sigv4proxy sign --help``).

    Returns:
        Exit code (0 on success, 1 on error).
    """
    parser = _common_parser(
        "sigv4proxy sign", "Print the headers that sign a request."
    )
    parser.add_argument(
        "--data", "-d", help="Request body to sign (UTF-8 text)"
    )
    args = parser.parse_args(argv)

    body = args.data.encode() if args.data is not None else None
    content = RequestContent(
        ContentType.STANDARD if body else ContentType.EMPTY, body
    )
    try:
        config, credential = _setup(args)
        now = datetime.now(UTC).replace(microsecond=0)
        request = _build_request(
            args, config, credential, content=content, now=now
        )
        context = sign(request, now=now)
    except (ConfigError, CredentialsError, SigningError, ValueError) as e:
        logger.error("%s", e)
        return 1

    print(
        "Authorization: "
        f"{context.request_authorization.to_authorization_header()}"
    )
    print(f"X-Amz-Date: {to_request_time(now)}")
    if credential.session_token:
        print(f"X-Amz-Security-Token: {credential.session_token}")
    if request.service_type.has_trait(SigningTrait.S3V4_SIGNER):
        content_hash = (
            request.signing_headers.get_first(CONTENT_SHA256_HEADER)
            or content.payload_hash()
        )
        print(f"X-Amz-Content-Sha256: {content_hash}")
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "init": "cmd_init",
    "presign": "cmd_presign",
    "sign": "cmd_sign",
}


def _print_info() -> None:
    """Print version information and available commands."""
    print(f"sigv4proxy {__version__}")
    print()
    print(_USAGE)


def cli() -> None:
    """Entry point for ``sigv4proxy``.

    When no arguments are given, prints version and usage information.
    Requires an explicit subcommand for all operations.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] == "--help":
        _print_info()
        sys.exit(0)

    if argv[0] not in _SUBCOMMANDS:
        print(f"sigv4proxy: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    command = argv[0]
    rest = argv[1:]

    # Look up handler by name so tests can mock individual commands.
    import sigv4proxy.cli as _self

    handler = getattr(_self, _DISPATCH[command])
    sys.exit(handler(rest))


#: Stub configuration template written by ``sigv4proxy init``.
_STUB_CONFIG = """\
# sigv4proxy Configuration

# signing:
#   max_clock_drift: 900        # seconds
#   double_url_encode: false    # non-S3 services only
#   default_region: us-east-1

# logging:
#   level: INFO

# credentials:
#   access_key_id: !env AWS_ACCESS_KEY_ID
#   secret_access_key: !env AWS_SECRET_ACCESS_KEY
#   session_token: !env AWS_SESSION_TOKEN

# Extra services (s3 and sts are built in).  Traits: s3v4-signer,
# stream-content.
# services:
#   execute-api: []
"""
