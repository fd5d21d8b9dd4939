# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for signing configuration."""

import logging
import os
from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from sigv4proxy.config import (
    BUILTIN_SERVICE_TYPES,
    ConfigError,
    SigningConfig,
    _coerce_bool,
    _EnvVar,
    _make_loader,
    _parse_traits,
    _raw_resolve,
    _resolve,
    get_config_path,
    get_dotenv_path,
)
from sigv4proxy.dotenv_loader import load_dotenv_once
from sigv4proxy.logging import SecretFilter
from sigv4proxy.signing.types import (
    S3,
    STS,
    Credential,
    SigningServiceType,
    SigningTrait,
)


@pytest.fixture(autouse=True)
def _no_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator:
    """Keep .env discovery inside the test's temporary directory."""
    monkeypatch.chdir(tmp_path)
    with patch(
        "sigv4proxy.config.get_dotenv_path",
        return_value=tmp_path / "xdg" / ".env",
    ):
        yield


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "sigv4proxy.yaml"
    path.write_text(text)
    return path


class TestRawResolve:
    """Tests for _raw_resolve."""

    def test_literal_string(self) -> None:
        """Literal string values resolve to themselves."""
        assert _raw_resolve("hello") == "hello"

    def test_none(self) -> None:
        """None resolves to None."""
        assert _raw_resolve(None) is None

    def test_int(self) -> None:
        """Non-string values are stringified."""
        assert _raw_resolve(42) == "42"

    def test_envvar_set(self) -> None:
        """EnvVar resolves to env value when set."""
        with patch.dict("os.environ", {"MY_VAR": "val"}):
            assert _raw_resolve(_EnvVar("MY_VAR")) == "val"

    def test_envvar_unset(self) -> None:
        """EnvVar resolves to None when env var is not set."""
        with patch.dict("os.environ", {}, clear=True):
            assert _raw_resolve(_EnvVar("MISSING")) is None


class TestCoerceBool:
    """Tests for _coerce_bool."""

    @pytest.mark.parametrize("value", [True, "true", "1", "YES", " on "])
    def test_truthy(self, value: object) -> None:
        assert _coerce_bool(value) is True

    @pytest.mark.parametrize("value", [False, "false", "0", "No", "off"])
    def test_falsy(self, value: object) -> None:
        assert _coerce_bool(value) is False

    def test_invalid(self) -> None:
        with pytest.raises(ConfigError, match="Cannot convert"):
            _coerce_bool("maybe")


class TestResolve:
    """Tests for _resolve."""

    def test_literal_int(self) -> None:
        assert _resolve(900, int) == 900

    def test_string_coerced_to_int(self) -> None:
        assert _resolve("60", int) == 60

    def test_default_when_none(self) -> None:
        assert _resolve(None, int, default=5) == 5

    def test_none_without_default(self) -> None:
        assert _resolve(None, str) is None

    def test_envvar_coerced(self) -> None:
        with patch.dict("os.environ", {"DRIFT": "120"}):
            assert _resolve(_EnvVar("DRIFT"), int) == 120

    def test_envvar_unset_uses_default(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            assert _resolve(_EnvVar("MISSING"), int, default=7) == 7

    def test_bool_from_string(self) -> None:
        assert _resolve("yes", bool) is True

    def test_bool_not_accepted_as_int(self) -> None:
        """YAML booleans are not silently used as integers."""
        with pytest.raises(ConfigError):
            _resolve(True, int)

    def test_invalid_int(self) -> None:
        with pytest.raises(ConfigError, match="Cannot convert 'abc' to int"):
            _resolve("abc", int)


class TestEnvLoader:
    """Tests for the ``!env`` YAML tag."""

    def test_env_tag_produces_placeholder(self) -> None:
        data = yaml.load("key: !env MY_KEY", Loader=_make_loader())
        assert isinstance(data["key"], _EnvVar)
        assert data["key"].var_name == "MY_KEY"

    def test_plain_values_unchanged(self) -> None:
        data = yaml.load("key: value\nn: 3", Loader=_make_loader())
        assert data == {"key": "value", "n": 3}

    def test_safe_loader_rejects_python_tags(self) -> None:
        with pytest.raises(yaml.YAMLError):
            yaml.load("x: !!python/object:os.system {}", Loader=_make_loader())


class TestParseTraits:
    """Tests for _parse_traits."""

    def test_none_is_empty(self) -> None:
        assert _parse_traits("svc", None) == frozenset()

    def test_known_traits(self) -> None:
        traits = _parse_traits("svc", ["s3v4-signer", "stream-content"])
        assert traits == frozenset(
            {SigningTrait.S3V4_SIGNER, SigningTrait.STREAM_CONTENT}
        )

    def test_unknown_trait(self) -> None:
        with pytest.raises(ConfigError, match="unknown trait 'fast'"):
            _parse_traits("svc", ["fast"])

    def test_not_a_list(self) -> None:
        with pytest.raises(ConfigError, match="must be a list"):
            _parse_traits("svc", "s3v4-signer")


class TestSigningConfig:
    """Tests for SigningConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = SigningConfig()
        assert config.max_clock_drift == timedelta(minutes=15)
        assert config.double_url_encode is False
        assert config.default_region == "us-east-1"
        assert config.log_level == "INFO"
        assert config.credential is None
        assert config.service_types == BUILTIN_SERVICE_TYPES

    def test_default_service_types_not_shared(self) -> None:
        config = SigningConfig()
        config.service_types["x"] = SigningServiceType("x")
        assert "x" not in BUILTIN_SERVICE_TYPES

    def test_negative_drift_rejected(self) -> None:
        with pytest.raises(ConfigError, match="Max clock drift"):
            SigningConfig(max_clock_drift_seconds=-1)

    def test_zero_drift_allowed(self) -> None:
        assert SigningConfig(max_clock_drift_seconds=0).max_clock_drift == (
            timedelta(0)
        )

    def test_empty_region_rejected(self) -> None:
        with pytest.raises(ConfigError, match="region"):
            SigningConfig(default_region="")

    def test_unknown_log_level_rejected(self) -> None:
        with pytest.raises(ConfigError, match="Unknown log level"):
            SigningConfig(log_level="LOUD")

    def test_service_type_known(self) -> None:
        config = SigningConfig()
        assert config.service_type("s3") is S3
        assert config.service_type("sts") is STS

    def test_service_type_unknown_is_generic(self) -> None:
        service = SigningConfig().service_type("execute-api")
        assert service == SigningServiceType("execute-api")
        assert not service.traits


class TestFromYaml:
    """Tests for SigningConfig.from_yaml."""

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Config file not found"):
            SigningConfig.from_yaml(tmp_path / "nope.yaml")

    def test_default_path_used(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "signing:\n  default_region: eu-west-1\n")
        with patch("sigv4proxy.config.get_config_path", return_value=path):
            config = SigningConfig.from_yaml()
        assert config.default_region == "eu-west-1"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        config = SigningConfig.from_yaml(_write(tmp_path, ""))
        assert config == SigningConfig()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Invalid YAML"):
            SigningConfig.from_yaml(_write(tmp_path, "signing: [unclosed\n"))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="must be a YAML mapping"):
            SigningConfig.from_yaml(_write(tmp_path, "- a\n- b\n"))

    def test_section_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="'signing' must be"):
            SigningConfig.from_yaml(_write(tmp_path, "signing: 5\n"))

    def test_full_config(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "signing:\n"
            "  max_clock_drift: 60\n"
            "  double_url_encode: true\n"
            "  default_region: ap-south-1\n"
            "logging:\n"
            "  level: debug\n",
        )
        config = SigningConfig.from_yaml(path)
        assert config.max_clock_drift == timedelta(seconds=60)
        assert config.double_url_encode is True
        assert config.default_region == "ap-south-1"
        assert config.log_level == "DEBUG"

    def test_env_tags_resolved(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SIGV4_DRIFT", "30")
        path = _write(
            tmp_path, "signing:\n  max_clock_drift: !env SIGV4_DRIFT\n"
        )
        assert SigningConfig.from_yaml(path).max_clock_drift_seconds == 30

    def test_invalid_drift_value(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "signing:\n  max_clock_drift: soon\n")
        with pytest.raises(ConfigError, match="Cannot convert"):
            SigningConfig.from_yaml(path)

    def test_services_merged_over_builtins(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "services:\n"
            "  execute-api: []\n"
            "  s3-outposts: [s3v4-signer]\n",
        )
        config = SigningConfig.from_yaml(path)
        assert config.service_type("s3") is S3
        assert config.service_type("execute-api").traits == frozenset()
        assert config.service_type("s3-outposts").has_trait(
            SigningTrait.S3V4_SIGNER
        )

    def test_builtin_service_overridable(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "services:\n  s3: [s3v4-signer]\n")
        s3 = SigningConfig.from_yaml(path).service_type("s3")
        assert not s3.has_trait(SigningTrait.STREAM_CONTENT)

    def test_unknown_trait_in_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "services:\n  foo: [turbo]\n")
        with pytest.raises(ConfigError, match="services.foo"):
            SigningConfig.from_yaml(path)

    def test_logs_summary(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = _write(tmp_path, "")
        with caplog.at_level(logging.DEBUG, logger="sigv4proxy.config"):
            SigningConfig.from_yaml(path)
        assert "2 services" in caplog.text


class TestCredentials:
    """Tests for the ``credentials`` section."""

    def test_absent(self, tmp_path: Path) -> None:
        assert SigningConfig.from_yaml(_write(tmp_path, "")).credential is None

    def test_literal_values(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "credentials:\n"
            "  access_key_id: AKID\n"
            "  secret_access_key: secret-value\n",
        )
        config = SigningConfig.from_yaml(path)
        assert config.credential == Credential("AKID", "secret-value")

    def test_env_values_registered_as_secrets(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("T_KEY", "AKID")
        monkeypatch.setenv("T_SECRET", "very-secret")
        monkeypatch.setenv("T_TOKEN", "session-tok")
        path = _write(
            tmp_path,
            "credentials:\n"
            "  access_key_id: !env T_KEY\n"
            "  secret_access_key: !env T_SECRET\n"
            "  session_token: !env T_TOKEN\n",
        )
        config = SigningConfig.from_yaml(path)
        assert config.credential == Credential(
            "AKID", "very-secret", "session-tok"
        )
        record = logging.LogRecord(
            name="t",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="very-secret session-tok AKID",
            args=(),
            exc_info=None,
        )
        SecretFilter().filter(record)
        assert record.msg == "[REDACTED] [REDACTED] AKID"

    def test_secret_not_in_repr(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "credentials:\n"
            "  access_key_id: AKID\n"
            "  secret_access_key: hidden-secret\n",
        )
        assert "hidden-secret" not in repr(SigningConfig.from_yaml(path))

    def test_unset_env_means_absent(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "credentials:\n"
            "  access_key_id: !env UNSET_KEY_ID\n"
            "  secret_access_key: !env UNSET_SECRET\n",
        )
        with patch.dict("os.environ", {}, clear=True):
            assert SigningConfig.from_yaml(path).credential is None

    def test_partial_rejected(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "credentials:\n  access_key_id: AKID\n")
        with pytest.raises(ConfigError, match="requires both"):
            SigningConfig.from_yaml(path)


class TestPaths:
    """Tests for XDG path helpers."""

    def test_config_path(self, tmp_path: Path) -> None:
        with patch(
            "sigv4proxy.config.user_config_path",
            return_value=tmp_path / "sigv4proxy",
        ) as mock_path:
            path = get_config_path()
        mock_path.assert_called_once_with("sigv4proxy")
        assert path == tmp_path / "sigv4proxy" / "sigv4proxy.yaml"

    def test_dotenv_path_next_to_config(self, tmp_path: Path) -> None:
        with patch(
            "sigv4proxy.config.user_config_path",
            return_value=tmp_path / "sigv4proxy",
        ):
            path = get_dotenv_path()
        assert path == tmp_path / "sigv4proxy" / ".env"


class TestDotenv:
    """Tests for .env loading through from_yaml."""

    def test_cwd_dotenv_feeds_env_tags(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("DOTENV_REGION", raising=False)
        (tmp_path / ".env").write_text("DOTENV_REGION=eu-north-1\n")
        path = _write(
            tmp_path, "signing:\n  default_region: !env DOTENV_REGION\n"
        )
        try:
            config = SigningConfig.from_yaml(path)
        finally:
            os.environ.pop("DOTENV_REGION", None)
        assert config.default_region == "eu-north-1"

    def test_xdg_dotenv_loaded(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("XDG_ONLY_VAR", raising=False)
        xdg = tmp_path / "xdg"
        xdg.mkdir()
        (xdg / ".env").write_text("XDG_ONLY_VAR=1\n")
        try:
            load_dotenv_once()
            assert os.environ.get("XDG_ONLY_VAR") == "1"
        finally:
            os.environ.pop("XDG_ONLY_VAR", None)

    def test_loaded_only_once(self, tmp_path: Path) -> None:
        with patch("sigv4proxy.dotenv_loader.load_dotenv") as mock_load:
            (tmp_path / ".env").write_text("A=1\n")
            load_dotenv_once()
            load_dotenv_once()
        mock_load.assert_called_once_with(tmp_path / ".env")

    def test_existing_env_not_overridden(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("KEEP_ME", "original")
        (tmp_path / ".env").write_text("KEEP_ME=from-file\n")
        load_dotenv_once()
        assert os.environ["KEEP_ME"] == "original"

