import os
import unittest
from unittest import mock

from chatcore.config import EngineConfig, load_config_from_env


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_config_from_env()

        self.assertEqual(config, EngineConfig())
        self.assertEqual(config.story_ttl_ms, 86_400_000)
        self.assertEqual(config.ticks_per_story, 50)
        self.assertIsNone(config.store_url)

    def test_environment_overrides(self):
        env = {
            "CHATCORE_HEARTBEAT_INTERVAL_S": "5",
            "CHATCORE_STORY_TTL_S": "60",
            "CHATCORE_STORY_DURATION_S": "2",
            "CHATCORE_PLAYBACK_TICK_S": "0.5",
            "CHATCORE_CALL_PAGE_SIZE": "10",
            "CHATCORE_STORE_URL": " http://store:8080 ",
            "CHATCORE_DB_PATH": "",
            "CHATCORE_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config_from_env()

        self.assertEqual(config.heartbeat_interval_s, 5.0)
        self.assertEqual(config.story_ttl_ms, 60_000)
        self.assertEqual(config.ticks_per_story, 4)
        self.assertEqual(config.call_log_page_size, 10)
        self.assertEqual(config.store_url, "http://store:8080")
        self.assertIsNone(config.db_path)
        self.assertEqual(config.log_level, "DEBUG")

    def test_invalid_values_name_the_variable(self):
        cases = {
            "CHATCORE_STORY_TTL_S": "soon",
            "CHATCORE_CALL_PAGE_SIZE": "0",
            "CHATCORE_PLAYBACK_TICK_S": "-1",
            "CHATCORE_LOG_LEVEL": "LOUD",
        }
        for name, value in cases.items():
            with self.subTest(name=name):
                with mock.patch.dict(os.environ, {name: value}, clear=True):
                    with self.assertRaisesRegex(ValueError, name):
                        load_config_from_env()


if __name__ == "__main__":
    unittest.main()
