import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from tone_deployer.config import AppConfig, load_config


class ConfigTests(unittest.TestCase):
    def test_loads_default_config(self) -> None:
        config = load_config()
        self.assertIsInstance(config, AppConfig)
        self.assertEqual(config.sequencer.settle_delay_ms, 500)
        self.assertEqual(config.sequencer.completion_delay_ms, 1000)
        self.assertEqual(config.result.status, "deployed")
        self.assertIsNone(config.steps)

    def test_missing_explicit_path_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_config("does/not/exist.json")

    def test_loads_custom_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text(json.dumps({
                "sequencer": {"settle_delay_ms": 0, "_note": "ignored", "reactivation_policy": "reject"},
                "result": {"live_url": "https://demo.example.com"},
                "steps": [{"message": "Only step", "duration_ms": 5}],
            }), encoding="utf-8")
            config = load_config(str(path))

        self.assertEqual(config.sequencer.settle_delay_ms, 0)
        self.assertEqual(config.sequencer.completion_delay_ms, 1000)
        self.assertEqual(config.sequencer.reactivation_policy, "reject")
        self.assertEqual(config.result.live_url, "https://demo.example.com")
        self.assertEqual(config.result.services, ["Frontend", "Backend", "Redis", "Database"])
        self.assertEqual(config.steps, [{"message": "Only step", "duration_ms": 5}])

    def test_env_vars_override_file(self) -> None:
        env = {
            "TONE_DEPLOYER_SETTLE_DELAY_MS": "10",
            "TONE_DEPLOYER_TIME_SCALE": "0.5",
            "TONE_DEPLOYER_LOG_LEVEL": "debug",
            "TONE_DEPLOYER_LIVE_URL": "https://env.example.com",
        }
        with mock.patch.dict(os.environ, env):
            config = load_config()
        self.assertEqual(config.sequencer.settle_delay_ms, 10)
        self.assertEqual(config.sequencer.time_scale, 0.5)
        self.assertEqual(config.logging.level, "DEBUG")
        self.assertEqual(config.result.live_url, "https://env.example.com")

    def test_env_vars_override_failure_settings(self) -> None:
        env = {
            "TONE_DEPLOYER_FAILURE_POLICY": "CONTINUE",
            "TONE_DEPLOYER_STRICT_LOG_STORE": "false",
        }
        with mock.patch.dict(os.environ, env):
            config = load_config()
        self.assertEqual(config.sequencer.failure_policy, "continue")
        self.assertFalse(config.sequencer.strict_log_store)

        with mock.patch.dict(os.environ, {"TONE_DEPLOYER_STRICT_LOG_STORE": "1"}):
            self.assertTrue(load_config().sequencer.strict_log_store)

    def test_explicit_empty_steps_are_kept(self) -> None:
        config = AppConfig.from_dict({"steps": []})
        self.assertEqual(config.steps, [])
        self.assertIsNone(AppConfig.from_dict({}).steps)

    def test_result_services_default_is_not_shared(self) -> None:
        first = AppConfig()
        second = AppConfig()
        first.result.services.append("Queue")
        self.assertNotIn("Queue", second.result.services)


if __name__ == "__main__":
    unittest.main()
