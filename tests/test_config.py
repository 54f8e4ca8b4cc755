import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from libraries.smart_pause import backend
from libraries.smart_pause.config import (
    DEFAULT_CONFIG,
    clamp_resume_delay,
    config_path,
    load_config,
    normalize_config,
    save_config,
)


@unittest.skipIf(os.name == "nt", "XDG config layout only")
class ConfigStorageTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        patcher = mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": self._tmp.name})
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_config_path_lives_under_xdg_config_home(self):
        path = Path(config_path())
        self.assertEqual(path.parent, Path(self._tmp.name) / "SmartPause")
        self.assertTrue(path.parent.is_dir())

    def test_missing_file_yields_defaults(self):
        self.assertEqual(load_config(), DEFAULT_CONFIG)

    def test_save_then_load_keeps_unknown_keys(self):
        save_config({"enabled": False, "resume_delay_ms": 250, "extra": "kept"})

        cfg = load_config()

        self.assertFalse(cfg["enabled"])
        self.assertEqual(cfg["resume_delay_ms"], 250)
        self.assertEqual(cfg["extra"], "kept")

    def test_corrupt_file_falls_back_to_defaults(self):
        Path(config_path()).write_text("{not json", encoding="utf-8")

        self.assertEqual(load_config(), DEFAULT_CONFIG)

    def test_out_of_range_delay_is_clamped_on_load(self):
        Path(config_path()).write_text(json.dumps({"resume_delay_ms": 99999}), encoding="utf-8")

        self.assertEqual(load_config()["resume_delay_ms"], 2000)


class NormalizeConfigTests(unittest.TestCase):
    def test_clamp_resume_delay(self):
        self.assertEqual(clamp_resume_delay(-5), 0)
        self.assertEqual(clamp_resume_delay("300"), 300)
        self.assertEqual(clamp_resume_delay(5000), 2000)
        self.assertEqual(clamp_resume_delay("soon"), 600)
        self.assertEqual(clamp_resume_delay(None), 600)

    def test_non_dict_becomes_defaults(self):
        self.assertEqual(normalize_config(["nope"]), DEFAULT_CONFIG)


class BuildPlayerBusTests(unittest.TestCase):
    def test_non_linux_platforms_are_rejected(self):
        with mock.patch.object(backend.sys, "platform", "win32"):
            with self.assertRaises(RuntimeError):
                backend.build_player_bus()


if __name__ == "__main__":
    unittest.main()
