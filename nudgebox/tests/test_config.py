import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from nudgebox.config import Settings


class SettingsTests(unittest.TestCase):
    def _settings(self, env):
        with patch.dict(os.environ, env, clear=True):
            return Settings(_env_file=None)

    def test_defaults(self):
        settings = self._settings({})
        self.assertIsNone(settings.database_url)
        self.assertFalse(settings.use_in_memory_backends)
        self.assertEqual(settings.export_skip_names, [".DS_Store"])
        self.assertEqual(settings.bcrypt_rounds, 12)

    def test_reads_field_named_env_vars(self):
        settings = self._settings(
            {
                "DATABASE_URL": "postgresql://db/nudgebox",
                "AUDIO_PASSWORD": "k" * 32,
                "EXPORT_BEST_EFFORT": "true",
                "STORE_TIMEOUT_SECONDS": "1.5",
            }
        )
        self.assertEqual(settings.database_url, "postgresql://db/nudgebox")
        self.assertEqual(settings.audio_password, "k" * 32)
        self.assertTrue(settings.export_best_effort)
        self.assertEqual(settings.store_timeout_seconds, 1.5)

    def test_in_memory_toggle(self):
        for name in ("NUDGEBOX_USE_IN_MEMORY_BACKENDS", "USE_IN_MEMORY_BACKENDS"):
            with self.subTest(name=name):
                self.assertTrue(self._settings({name: "true"}).use_in_memory_backends)

    def test_bcrypt_rounds_bounds(self):
        with self.assertRaises(ValidationError):
            self._settings({"BCRYPT_ROUNDS": "3"})


if __name__ == "__main__":
    unittest.main()
