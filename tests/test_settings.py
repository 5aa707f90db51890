from __future__ import annotations

from pathlib import Path
import json
import tempfile
import unittest

from converters import ConversionFormat
from converters.settings import DEFAULT_SETTINGS, Settings, load_settings, save_settings


class TestSettings(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name) / "nested" / "settings.json"

    def test_missing_file_gives_gif_default(self) -> None:
        self.assertEqual(load_settings(self.path), DEFAULT_SETTINGS)
        self.assertIs(load_settings(self.path).default_format, ConversionFormat.GIF)

    def test_save_then_load(self) -> None:
        save_settings(Settings(default_format=ConversionFormat.VIDEO), self.path)
        self.assertEqual(json.loads(self.path.read_text(encoding="utf-8")), {"settings": {"defaultFormat": "video"}})
        self.assertIs(load_settings(self.path).default_format, ConversionFormat.VIDEO)

    def test_broken_file_falls_back(self) -> None:
        self.path.parent.mkdir(parents=True)
        for content in ("{not json", "[]", '{"settings": {"defaultFormat": "webm"}}', '{"settings": 3}'):
            self.path.write_text(content, encoding="utf-8")
            with self.subTest(content=content):
                self.assertEqual(load_settings(self.path), DEFAULT_SETTINGS)


if __name__ == "__main__":
    unittest.main()
