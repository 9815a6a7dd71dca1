"""Tests for server configuration loading."""

import importlib.util
import json
import os
from unittest.mock import patch

from qwen_proxy import config as config_module
from qwen_proxy.config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ProxyConfig,
    create_error_response,
    load_proxy_config,
    save_proxy_config,
)


class TestLoadProxyConfig:
    """Tests for load_proxy_config."""

    def test_defaults_when_missing(self, tmp_path):
        config = load_proxy_config(str(tmp_path / "config.json"), apply_env=False)
        assert config == ProxyConfig()
        assert config.host == DEFAULT_HOST
        assert config.port == DEFAULT_PORT
        assert config.routing_strategy == "default"

    def test_reads_camel_case_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"port": 8080, "routingStrategy": "round-robin"}))

        config = load_proxy_config(str(path), apply_env=False)

        assert config.port == 8080
        assert config.routing_strategy == "round-robin"
        assert config.host == DEFAULT_HOST

    def test_corrupt_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{")
        assert load_proxy_config(str(path), apply_env=False) == ProxyConfig()

    def test_environment_overrides(self, tmp_path):
        env = {"PORT": "9000", "HOST": "0.0.0.0", "ROUTING_STRATEGY": "round-robin"}
        with patch.dict("os.environ", env):
            config = load_proxy_config(str(tmp_path / "config.json"))

        assert config.port == 9000
        assert config.host == "0.0.0.0"
        assert config.routing_strategy == "round-robin"

    def test_invalid_port_is_ignored(self, tmp_path):
        with patch.dict("os.environ", {"PORT": "not-a-port"}):
            config = load_proxy_config(str(tmp_path / "config.json"))
        assert config.port == DEFAULT_PORT


class TestSaveProxyConfig:
    """Tests for save_proxy_config."""

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "nested" / "config.json")
        save_proxy_config(ProxyConfig(port=1234, routing_strategy="round-robin"), path)

        with open(path, encoding="utf-8") as f:
            assert json.load(f)["routingStrategy"] == "round-robin"
        assert load_proxy_config(path, apply_env=False).port == 1234


def test_error_response_shape():
    assert create_error_response("boom") == {"error": "boom"}


class TestDotenv:
    """Settings read at import time honour a .env file in the working directory."""

    def _load_config_copy(self):
        spec = importlib.util.spec_from_file_location(
            "qwen_proxy_config_copy", config_module.__file__
        )
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def test_proxy_dir_and_debug_from_dotenv(self, tmp_path, monkeypatch):
        state_dir = tmp_path / "state"
        (tmp_path / ".env").write_text(f"QWEN_PROXY_DIR={state_dir}\nDEBUG=1\n")
        monkeypatch.chdir(tmp_path)

        with patch.dict(os.environ):
            os.environ.pop("QWEN_PROXY_DIR", None)
            os.environ.pop("DEBUG", None)
            module = self._load_config_copy()

        assert module.PROXY_DIR == str(state_dir)
        assert module.ACCOUNTS_FILE == str(state_dir / "accounts.json")
        assert module.DEBUG is True
