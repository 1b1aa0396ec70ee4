"""
Tests for configuration loading.
"""
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from stock_publisher.config import (
    AppConfig, GettyConfig, OpenAIVisionConfig, PexelsConfig, ReplicateConfig, RetryPolicy,
    load_config, save_config
)


class TestLoadConfig(unittest.TestCase):
    """Test cases for load_config and save_config."""

    def setUp(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, "config.json")

    def tearDown(self):
        """Clean up after tests."""
        shutil.rmtree(self.temp_dir)

    def write_config(self, config_dict):
        with open(self.config_path, 'w') as f:
            json.dump(config_dict, f)

    @patch.dict(os.environ, {"OPENAI_KEY": "env-openai", "REPLICATE_API_TOKEN": "env-replicate"})
    def test_defaults(self):
        """Without a file, defaults apply and keys come from the environment."""
        config = load_config()

        self.assertEqual(config.completion.api_key, "env-openai")
        self.assertIsInstance(config.caption, ReplicateConfig)
        self.assertEqual(config.caption.api_token, "env-replicate")
        self.assertIsNone(config.upload_target)
        self.assertEqual(config.max_attempts, 10)
        self.assertEqual(config.transport_retry, RetryPolicy(10, 5000))
        self.assertEqual(config.image_extensions, ['.png', '.jpg', '.gif', '.jpeg', '.JPG'])
        self.assertEqual(config.step_failure_policy,
                         {"metadata": "soft", "description": "soft", "keywords": "soft"})
        self.assertEqual(config.missing_description, "skip")

    @patch.dict(os.environ, {"MY_KEY": "secret"})
    def test_file_with_env_substitution(self):
        """Provider-prefixed keys build provider configs; ${VAR} is substituted."""
        self.write_config({
            "openai_api_key": "${MY_KEY}",
            "openai_model": "gpt-4o-mini",
            "caption_provider": "openai",
            "vision_model": "gpt-4o",
            "upload_target": "pexels",
            "pexels_cookies_file": "/tmp/pexels.json",
            "max_workers": 4,
            "validation_retry": {"max_attempts": 3, "backoff_ms": 0},
            "step_failure_policy": {"keywords": "abort_record"},
            "missing_description": "placeholder"
        })

        config = load_config(self.config_path)

        self.assertEqual(config.completion.api_key, "secret")
        self.assertEqual(config.completion.model, "gpt-4o-mini")
        self.assertIsInstance(config.caption, OpenAIVisionConfig)
        self.assertEqual(config.caption.model, "gpt-4o")
        self.assertEqual(config.caption.api_key, "secret")
        self.assertIsInstance(config.upload_target, PexelsConfig)
        self.assertEqual(config.upload_target.cookies_file, "/tmp/pexels.json")
        self.assertEqual(config.max_workers, 4)
        self.assertEqual(config.validation_retry, RetryPolicy(3, 0))
        self.assertEqual(config.policy_for("keywords"), "abort_record")
        self.assertEqual(config.policy_for("metadata"), "soft")

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_env_var_is_logged(self):
        """An unset ${VAR} becomes an empty string and is reported through logging."""
        self.write_config({"openai_api_key": "${UNSET_KEY}"})

        with self.assertLogs('stock_publisher.config', level='WARNING') as logs:
            config = load_config(self.config_path)

        self.assertEqual(config.completion.api_key, "")
        self.assertIn("UNSET_KEY", logs.output[0])

    def test_invalid_values(self):
        """Unsupported providers and policies are rejected."""
        for bad in (
            {"caption_provider": "nope"},
            {"upload_target": "flickr"},
            {"step_failure_policy": {"keywords": "explode"}},
            {"step_failure_policy": {"upload": "soft"}},
            {"missing_description": "guess"},
            {"max_workers": 0},
            {"unknown_field": 1},
        ):
            self.write_config(bad)
            with self.assertRaises(ValueError, msg=str(bad)):
                load_config(self.config_path)

    def test_unreadable_file(self):
        """Missing or broken files raise RuntimeError."""
        with self.assertRaises(RuntimeError):
            load_config(os.path.join(self.temp_dir, "missing.json"))

        with open(self.config_path, 'w') as f:
            f.write("{broken")
        with self.assertRaises(RuntimeError):
            load_config(self.config_path)

    def test_save_and_reload(self):
        """A saved configuration loads back to the same values."""
        config = AppConfig(
            upload_target=GettyConfig(cookies_file="/tmp/getty.json"),
            max_workers=2,
            case_insensitive_extensions=True,
            transport_retry=RetryPolicy(5, 1000),
        )
        config.completion.api_key = "k"
        config.caption.api_token = "t"

        save_config(config, self.config_path)
        reloaded = load_config(self.config_path)

        self.assertEqual(reloaded, config)

    def test_retry_policy_waits(self):
        policy = RetryPolicy(max_attempts=10, backoff_ms=5000)
        self.assertEqual(policy.wait_before(1), 0)
        self.assertEqual(policy.wait_before(2), 5.0)
        self.assertEqual(policy.wait_before(10), 45.0)


if __name__ == '__main__':
    unittest.main()
