# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signing configuration.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/sigv4proxy/sigv4proxy.yaml``
    (typically ``~/.config/sigv4proxy/sigv4proxy.yaml``)

``!env`` tags resolve values from environment variables; a ``.env`` file
next to the config (or in the working directory) is loaded first.

Example::

    signing:
      max_clock_drift: 900
      double_url_encode: false
      default_region: eu-west-1

    logging:
      level: DEBUG

    credentials:
      access_key_id: !env AWS_ACCESS_KEY_ID
      secret_access_key: !env AWS_SECRET_ACCESS_KEY

    services:
      execute-api: []
      s3-outposts: [s3v4-signer, stream-content]
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from sigv4proxy.dotenv_loader import load_dotenv_once
from sigv4proxy.logging import SecretFilter
from sigv4proxy.signing.types import (
    S3,
    STS,
    Credential,
    SigningServiceType,
    SigningTrait,
)


logger = logging.getLogger(__name__)

_T = TypeVar("_T")

#: Application name for XDG path resolution.
_APP_NAME = "sigv4proxy"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

DEFAULT_MAX_CLOCK_DRIFT_SECONDS = 900
DEFAULT_REGION = "us-east-1"

#: Service types known without configuration.
BUILTIN_SERVICE_TYPES: dict[str, SigningServiceType] = {
    S3.service_name: S3,
    STS.service_name: STS,
}


def get_config_path() -> Path:
    """Return the default config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/sigv4proxy/sigv4proxy.yaml``.

    Returns:
        Path to the config file.
    """
    return user_config_path(_APP_NAME) / "sigv4proxy.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` file path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``).
        default: Default when value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)
    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _section(raw: dict, name: str) -> dict:
    """Return a top-level mapping section, empty if absent."""
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return value


def _parse_traits(service_name: str, value: object) -> frozenset[SigningTrait]:
    """Parse a service's trait list (``[s3v4-signer, stream-content]``)."""
    if value is None:
        return frozenset()
    if not isinstance(value, list):
        raise ConfigError(
            f"services.{service_name} must be a list of traits, "
            f"got {type(value).__name__}"
        )
    traits: set[SigningTrait] = set()
    for item in value:
        resolved = _raw_resolve(item)
        if not resolved:
            continue
        try:
            traits.add(SigningTrait(resolved))
        except ValueError as e:
            valid = ", ".join(t.value for t in SigningTrait)
            raise ConfigError(
                f"services.{service_name}: unknown trait {resolved!r} "
                f"(valid: {valid})"
            ) from e
    return frozenset(traits)


def _parse_services(raw: dict) -> dict[str, SigningServiceType]:
    """Merge configured services over the built-in ones."""
    services = dict(BUILTIN_SERVICE_TYPES)
    for name, traits in _section(raw, "services").items():
        name = str(name)
        services[name] = SigningServiceType(name, _parse_traits(name, traits))
    return services


def _parse_credential(raw: dict) -> Credential | None:
    """Build the optional static credential, registering its secrets."""
    section = _section(raw, "credentials")
    access_key = _resolve(section.get("access_key_id"), str)
    secret_key = _resolve(section.get("secret_access_key"), str)
    session_token = _resolve(section.get("session_token"), str)
    if not access_key and not secret_key:
        return None
    if not access_key or not secret_key:
        raise ConfigError(
            "credentials requires both access_key_id and secret_access_key"
        )
    SecretFilter.register_secret(secret_key)
    SecretFilter.register_secret(session_token)
    return Credential(access_key, secret_key, session_token or None)


# ---------------------------------------------------------------------------
# Signing configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SigningConfig:
    """Signing settings.

    Attributes:
        max_clock_drift_seconds: Allowed distance between a request's
            claimed time and now.
        double_url_encode: Encode canonical paths twice for non-S3
            services.
        default_region: Region used when a caller does not name one.
        log_level: Root logging level name.
        service_types: Known services keyed by signing name.
        credential: Optional static credential for outgoing signing.
    """

    max_clock_drift_seconds: int = DEFAULT_MAX_CLOCK_DRIFT_SECONDS
    double_url_encode: bool = False
    default_region: str = DEFAULT_REGION
    log_level: str = "INFO"
    service_types: dict[str, SigningServiceType] = field(
        default_factory=lambda: dict(BUILTIN_SERVICE_TYPES)
    )
    credential: Credential | None = None

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if self.max_clock_drift_seconds < 0:
            raise ConfigError(
                f"Max clock drift must be >= 0s: {self.max_clock_drift_seconds}"
            )
        if not self.default_region:
            raise ConfigError("Default region must not be empty")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigError(f"Unknown log level: {self.log_level!r}")

    @property
    def max_clock_drift(self) -> timedelta:
        return timedelta(seconds=self.max_clock_drift_seconds)

    def service_type(self, service_name: str) -> SigningServiceType:
        """Known service type, or a generic one for unknown services."""
        return self.service_types.get(
            service_name, SigningServiceType(service_name)
        )

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "SigningConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/sigv4proxy/sigv4proxy.yaml`` (XDG).

        Returns:
            SigningConfig instance.

        Raises:
            ConfigError: If the file is missing or a value is invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.debug(
            "Signing config loaded from %s: %d services, max_drift=%ds",
            config_path,
            len(config.service_types),
            config.max_clock_drift_seconds,
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "SigningConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        signing = _section(raw, "signing")
        logging_section = _section(raw, "logging")

        return cls(
            max_clock_drift_seconds=_resolve(
                signing.get("max_clock_drift"),
                int,
                default=DEFAULT_MAX_CLOCK_DRIFT_SECONDS,
            ),
            double_url_encode=_resolve(
                signing.get("double_url_encode"), bool, default=False
            ),
            default_region=_resolve(
                signing.get("default_region"), str, default=DEFAULT_REGION
            ),
            log_level=_resolve(
                logging_section.get("level"), str, default="INFO"
            ).upper(),
            service_types=_parse_services(raw),
            credential=_parse_credential(raw),
        )
