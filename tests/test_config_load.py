import os
import unittest
from pathlib import Path
from unittest.mock import patch

from moltpulse.autonomy.config import DEFAULT_MODERATOR_NAMES, load_config


class ConfigLoadTests(unittest.TestCase):
    def test_load_config_returns_config(self) -> None:
        cfg = load_config()
        self.assertIsNotNone(cfg)

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.heartbeat_seconds, 14400)
        self.assertEqual(cfg.max_comments_per_day, 45)
        self.assertEqual(cfg.moderator_names, DEFAULT_MODERATOR_NAMES)
        self.assertEqual(cfg.favorite_submolts, ["general"])
        self.assertEqual(cfg.challenge_mark_policy, "always")
        self.assertFalse(cfg.dry_run)
        self.assertEqual(cfg.state_path, Path("memory/state.json"))

    def test_env_overrides_are_normalized(self) -> None:
        env = {
            "MOLTBOOK_FAVORITE_SUBMOLTS": "m/Agents, general",
            "MOLTBOOK_MODERATOR_NAMES": "ModOne,modtwo",
            "MOLTBOOK_COMMENT_PROBABILITY": "1.7",
            "MOLTBOOK_CHALLENGE_MARK_POLICY": "sometimes",
            "MOLTBOOK_ACTION_DELAY_MIN_SECONDS": "10",
            "MOLTBOOK_ACTION_DELAY_MAX_SECONDS": "5",
            "MOLTBOOK_DRY_RUN": "yes",
            "MOLTBOOK_ACTION_JOURNAL_PATH": "",
        }
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.favorite_submolts, ["agents", "general"])
        self.assertEqual(cfg.moderator_names, ["modone", "modtwo"])
        self.assertEqual(cfg.comment_probability, 1.0)
        self.assertEqual(cfg.challenge_mark_policy, "always")
        self.assertEqual(cfg.action_delay_max_seconds, 10.0)
        self.assertTrue(cfg.dry_run)
        self.assertIsNone(cfg.action_journal_path)


if __name__ == "__main__":
    unittest.main()
