"""出力形式の設定をJSONファイルへ保存・復元する。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import json

from .pipeline import ConversionFormat

DEFAULT_SETTINGS_PATH = Path.home() / ".still2loop" / "settings.json"


@dataclass(frozen=True)
class Settings:
    default_format: ConversionFormat = ConversionFormat.GIF


DEFAULT_SETTINGS = Settings()


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """保存済み設定を読み込む。無い・壊れている場合は既定値を返す。"""
    try:
        if not path.exists():
            return DEFAULT_SETTINGS
        data = json.loads(path.read_text(encoding="utf-8"))
        section = data.get("settings") or {}
        return Settings(default_format=ConversionFormat(section.get("defaultFormat", DEFAULT_SETTINGS.default_format)))
    except (OSError, ValueError, AttributeError):
        # 復元に失敗しても変換は続ける
        return DEFAULT_SETTINGS


def save_settings(settings: Settings, path: Path = DEFAULT_SETTINGS_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"settings": {"defaultFormat": settings.default_format.value}}
    path.write_text(json.dumps(payload), encoding="utf-8")
