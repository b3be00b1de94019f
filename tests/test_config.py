"""Tests for configuration loading and validation."""

from __future__ import annotations

import tempfile
from pathlib import Path
import unittest

from august_chat.config import (
    DEFAULT_CONFIG,
    DEFAULT_MODEL,
    ENV_IDENTITY_URL,
    ENV_PROVIDER_API_KEY,
    ENV_SERVICE_ROLE_KEY,
    ServerSecrets,
    load_config,
)


class ConfigTests(unittest.TestCase):
    """Validate config merge and fallback behavior."""

    def test_missing_config_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config = load_config(config_path=config_path)
            self.assertEqual(config["app"]["title"], DEFAULT_CONFIG["app"]["title"])
            self.assertEqual(config["gateway"]["default_model"], DEFAULT_MODEL)
            # models is normalised to [default_model] when the raw default is empty.
            self.assertEqual(config["gateway"]["models"], [DEFAULT_MODEL])
            self.assertEqual(config["identity"]["url"], "")
            self.assertEqual(config["attachments"]["max_files"], 5)
            self.assertEqual(config["attachments"]["max_text_chars"], 20_000)
            self.assertEqual(config["render"]["steps"], 120)
            self.assertEqual(config["server"]["path"], "/chat")
            self.assertEqual(config["server"]["allowed_models"], [])

    def test_partial_config_overrides_selected_values(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config_path.write_text(
                """
[gateway]
url = "https://gateway.example.test/chat/"
default_model = "openai/gpt-4o"
models = ["anthropic/claude", "openai/gpt-4o", "anthropic/claude"]

[identity]
url = "https://project.example.test"
anon_key = "  anon  "

[render]
steps = 40
                """.strip(),
                encoding="utf-8",
            )
            config = load_config(config_path=config_path)
            self.assertEqual(config["gateway"]["url"], "https://gateway.example.test/chat")
            self.assertEqual(
                config["gateway"]["models"], ["openai/gpt-4o", "anthropic/claude"]
            )
            self.assertEqual(config["identity"]["anon_key"], "anon")
            self.assertEqual(config["render"]["steps"], 40)
            self.assertEqual(config["app"]["title"], DEFAULT_CONFIG["app"]["title"])

    def test_models_fallback_to_default_model_when_missing(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config_path.write_text(
                """
[gateway]
default_model = "mistral/small"
                """.strip(),
                encoding="utf-8",
            )
            config = load_config(config_path=config_path)
            self.assertEqual(config["gateway"]["models"], ["mistral/small"])

    def test_invalid_values_fallback_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config_path.write_text(
                """
[gateway]
url = "ftp://nope"
timeout_seconds = -1

[attachments]
max_files = 0
                """.strip(),
                encoding="utf-8",
            )
            with self.assertLogs("august_chat.config", level="WARNING"):
                config = load_config(config_path=config_path)
            self.assertEqual(config["gateway"]["url"], DEFAULT_CONFIG["gateway"]["url"])
            self.assertEqual(
                config["gateway"]["timeout_seconds"],
                DEFAULT_CONFIG["gateway"]["timeout_seconds"],
            )
            self.assertEqual(config["attachments"]["max_files"], 5)

    def test_unparseable_toml_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config_path.write_text("[gateway\nurl = ", encoding="utf-8")
            with self.assertLogs("august_chat.config", level="WARNING"):
                config = load_config(config_path=config_path)
            self.assertEqual(config["gateway"]["url"], DEFAULT_CONFIG["gateway"]["url"])

    def test_server_path_must_be_absolute(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            config_path.write_text('[server]\npath = "chat"\n', encoding="utf-8")
            with self.assertLogs("august_chat.config", level="WARNING"):
                config = load_config(config_path=config_path)
            self.assertEqual(config["server"]["path"], "/chat")


class ServerSecretsTests(unittest.TestCase):
    def test_from_env(self) -> None:
        secrets = ServerSecrets.from_env(
            {
                ENV_IDENTITY_URL: "https://project.example.test/",
                ENV_SERVICE_ROLE_KEY: " service ",
                ENV_PROVIDER_API_KEY: "provider",
            }
        )
        self.assertTrue(secrets.complete)
        self.assertEqual(secrets.identity_url, "https://project.example.test")
        self.assertEqual(secrets.service_role_key, "service")

    def test_incomplete_secrets(self) -> None:
        self.assertFalse(ServerSecrets.from_env({ENV_PROVIDER_API_KEY: "x"}).complete)

    def test_repr_hides_keys(self) -> None:
        secrets = ServerSecrets(
            identity_url="https://p.test", service_role_key="sk-1", provider_api_key="sk-2"
        )
        self.assertNotIn("sk-1", repr(secrets))
        self.assertNotIn("sk-2", str(secrets))


if __name__ == "__main__":
    unittest.main()
