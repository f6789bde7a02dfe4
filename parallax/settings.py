from dataclasses import dataclass
from typing import List, Tuple

from PyQt6.QtCore import QSettings

from .models import TranslationMode

# (code, English name, native name)
SUPPORTED_LANGUAGES: List[Tuple[str, str, str]] = [
    ("zh", "Chinese", "中文"),
    ("en", "English", "English"),
    ("ja", "Japanese", "日本語"),
    ("ko", "Korean", "한국어"),
    ("fr", "French", "Français"),
    ("de", "German", "Deutsch"),
    ("es", "Spanish", "Español"),
    ("ru", "Russian", "Русский"),
    ("pt", "Portuguese", "Português"),
    ("it", "Italian", "Italiano"),
    ("ar", "Arabic", "العربية"),
    ("th", "Thai", "ไทย"),
    ("vi", "Vietnamese", "Tiếng Việt"),
]

DEFAULT_TARGET_LANGUAGE = "zh"


@dataclass(frozen=True)
class SettingsSnapshot:
    """Settings as read at the start of a run"""
    target_language: str = DEFAULT_TARGET_LANGUAGE
    translation_mode: TranslationMode = TranslationMode.ONLINE
    display_index: int = 0
    use_acceleration: bool = True


def language_name(code: str) -> str:
    for lang_code, _, native in SUPPORTED_LANGUAGES:
        if lang_code == code:
            return native
    return code


class Settings:
    """QSettings-backed store for the user's choices"""

    def __init__(self, qsettings: QSettings = None):
        self.settings = qsettings or QSettings("Parallax", "ScreenTranslator")

    @property
    def target_language(self) -> str:
        return str(self.settings.value("target_language", DEFAULT_TARGET_LANGUAGE))

    @target_language.setter
    def target_language(self, code: str):
        self.settings.setValue("target_language", code)

    @property
    def translation_mode(self) -> TranslationMode:
        raw = self.settings.value("translation_mode", TranslationMode.ONLINE.value)
        try:
            return TranslationMode(raw)
        except ValueError:
            return TranslationMode.ONLINE

    @translation_mode.setter
    def translation_mode(self, mode: TranslationMode):
        self.settings.setValue("translation_mode", mode.value)

    @property
    def display_index(self) -> int:
        try:
            return int(self.settings.value("display_index", 0))
        except (TypeError, ValueError):
            return 0

    @display_index.setter
    def display_index(self, index: int):
        self.settings.setValue("display_index", int(index))

    @property
    def use_acceleration(self) -> bool:
        # QSettings round-trips booleans as strings on some backends
        return str(self.settings.value("use_acceleration", "true")).lower() == "true"

    @use_acceleration.setter
    def use_acceleration(self, enabled: bool):
        self.settings.setValue("use_acceleration", "true" if enabled else "false")

    def snapshot(self) -> SettingsSnapshot:
        return SettingsSnapshot(
            target_language=self.target_language,
            translation_mode=self.translation_mode,
            display_index=self.display_index,
            use_acceleration=self.use_acceleration,
        )
