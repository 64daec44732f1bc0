"""Tests for engine settings and secret resolution."""
import os
import tempfile
from pathlib import Path

import pytest

from vnf_framework.config.secrets import SecretResolver, normalize_secret_ref
from vnf_framework.config.settings import EngineSettings
from vnf_framework.errors import SecretNotFoundError


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self):
        settings = EngineSettings()
        assert settings.request_timeout == 30.0
        assert settings.max_retries == 3
        assert settings.token_expiry == 300
        assert settings.verify_ssl is True
        assert settings.broker_address is None

    def test_from_mapping_coerces_types(self):
        settings = EngineSettings.from_mapping({
            "request_timeout": "12",
            "max-retries": "5",
            "verify_ssl": "no",
            "broker_address": "192.0.2.1",
            "unknown_key": 1,
        })

        assert settings.request_timeout == 12.0
        assert settings.max_retries == 5
        assert settings.verify_ssl is False
        assert settings.broker_address == "192.0.2.1"

    def test_invalid_value(self):
        with pytest.raises(ValueError):
            EngineSettings.from_mapping({"max_retries": "many"})

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("VNF_MAX_RETRIES", "7")
        monkeypatch.setenv("VNF_FLAG_PROPERTY_DRIFT", "true")

        settings = EngineSettings.from_env(EngineSettings.from_mapping({"max_retries": 2}))

        assert settings.max_retries == 7
        assert settings.flag_property_drift is True

    def test_from_file(self, monkeypatch):
        monkeypatch.delenv("VNF_REQUEST_TIMEOUT", raising=False)
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("settings:\n  request_timeout: 3.5\n")
        try:
            settings = EngineSettings.from_file(Path(f.name))
        finally:
            os.unlink(f.name)

        assert settings.request_timeout == 3.5

    def test_to_dict_masks_secret(self):
        settings = EngineSettings(token_secret="hunter2")
        assert settings.to_dict()["token_secret"] == "***"


class TestSecretResolver:
    """Tests for SecretResolver."""

    def test_normalize(self):
        assert normalize_secret_ref("acme.api-token") == "ACME_API_TOKEN"

    def test_prefixed_env_wins(self, monkeypatch):
        monkeypatch.setenv("VNF_SECRET_ACME_API_TOKEN", "from-env")
        resolver = SecretResolver(values={"ACME_API_TOKEN": "from-values"})
        assert resolver.get("ACME_API_TOKEN") == "from-env"

    def test_values_fallback(self, monkeypatch):
        monkeypatch.delenv("VNF_SECRET_FW_PASS", raising=False)
        monkeypatch.delenv("FW_PASS", raising=False)
        resolver = SecretResolver(values={"FW_PASS": "pw"})
        assert resolver.require("FW_PASS") == "pw"

    def test_missing_raises(self):
        with pytest.raises(SecretNotFoundError) as exc_info:
            SecretResolver().require("NO_SUCH_SECRET_REF")
        assert exc_info.value.ref == "NO_SUCH_SECRET_REF"
        assert isinstance(exc_info.value, KeyError)

    def test_secrets_file(self):
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("secrets:\n  EDGE_USER: admin\n  EMPTY: null\n")
        try:
            resolver = SecretResolver(secrets_file=Path(f.name))
        finally:
            os.unlink(f.name)

        assert resolver.get("EDGE_USER") == "admin"
        assert resolver.get("EMPTY") is None

    def test_missing_secrets_file_is_empty(self):
        resolver = SecretResolver(secrets_file=Path("/nonexistent/secrets.yaml"))
        assert resolver.get("ANYTHING_AT_ALL_XYZ") is None
