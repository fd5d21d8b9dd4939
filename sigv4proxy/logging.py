# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration with secret redaction.

Signing code handles secret access keys and session tokens.  None of them
is ever passed to a logger on purpose, but entry points register them with
``SecretFilter`` so an accidental interpolation is still redacted.

Usage:
    # In entry points (CLI)
    from sigv4proxy.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.debug("Signing %s %s", method, uri)
"""

import logging
import re
from typing import ClassVar


_REDACTED = "[REDACTED]"
_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Secrets are registered at runtime with register_secret() and replaced
    with ``[REDACTED]`` wherever they appear in a message or its string
    arguments.

    Example:
        SecretFilter.register_secret(credential.secret_key)
        handler.addFilter(SecretFilter())
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact registered secrets from the record.

        Args:
            record: The log record to filter.

        Returns:
            Always True (record is never suppressed, only modified).
        """
        if self._pattern is not None:
            record.msg = self._pattern.sub(_REDACTED, str(record.msg))
            if record.args:
                record.args = tuple(
                    self._pattern.sub(_REDACTED, str(arg))
                    if isinstance(arg, str)
                    else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str | None) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact.  Empty values and None
                are ignored.
        """
        if secret:
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        if cls._secrets:
            # Longest first so a secret containing another is fully masked
            ordered = sorted(cls._secrets, key=len, reverse=True)
            escaped = [re.escape(s) for s in ordered]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger with a redacting stream handler.

    Args:
        level: Logging level, as a number or a name such as ``"DEBUG"``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module.

    Args:
        name: The logger name, typically __name__.

    Returns:
        A logger instance.
    """
    return logging.getLogger(name)
