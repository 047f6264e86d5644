from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from .languages import resolve_language

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = "PARKSPEAK_SETTINGS"


@dataclass(frozen=True, slots=True)
class Settings:
    language: str = "en"
    # Multiplies spoken-digit rate; < 1.0 slows speech for listeners who need it.
    hearing_adjustment: float = 1.0
    db_path: str = ""
    hearing_result: str | None = None
    hearing_tested_at: str | None = None

    def resolved_db_path(self) -> Path:
        if self.db_path.strip():
            return Path(self.db_path).expanduser()
        return Path.home() / ".parkspeak" / "parkspeak.sqlite3"

    def to_dict(self) -> dict[str, object]:
        return {
            "language": self.language,
            "hearing_adjustment": self.hearing_adjustment,
            "db_path": self.db_path,
            "hearing_result": self.hearing_result,
            "hearing_tested_at": self.hearing_tested_at,
        }

    @classmethod
    def from_dict(cls, payload: object) -> "Settings":
        if not isinstance(payload, dict):
            return cls()
        try:
            adjustment = float(payload.get("hearing_adjustment", 1.0))
        except (TypeError, ValueError):
            adjustment = 1.0
        adjustment = max(0.5, min(2.0, adjustment))
        raw_result = payload.get("hearing_result")
        raw_tested_at = payload.get("hearing_tested_at")
        return cls(
            language=resolve_language(str(payload.get("language", "en"))),
            hearing_adjustment=adjustment,
            db_path=str(payload.get("db_path", "") or ""),
            hearing_result=None if raw_result is None else str(raw_result),
            hearing_tested_at=None if raw_tested_at is None else str(raw_tested_at),
        )


class SettingsStore:
    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = path
        self._settings = Settings()
        self._load()

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(SETTINGS_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".parkspeak_settings.json"

    @property
    def settings(self) -> Settings:
        return self._settings

    def update(self, **changes: object) -> Settings:
        merged = {**self._settings.to_dict(), **changes}
        self._settings = Settings.from_dict(merged)
        return self._settings

    def record_hearing_result(self, *, result: str, tested_at: str) -> None:
        self._settings = replace(self._settings, hearing_result=result, hearing_tested_at=tested_at)
        self.save()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable settings file %s", self._path)
            return
        if not isinstance(payload, dict):
            return
        self._settings = Settings.from_dict(payload.get("settings"))

    def save(self) -> None:
        payload = {"version": self._version, "settings": self._settings.to_dict()}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            logger.exception("Failed to save settings to %s", self._path)
