"""
Shared pytest fixtures for the Parallax test suite.

Provides an offscreen QApplication plus fakes for the recognition engine,
the capture source, the translation backends and text measurement, so
tests run without a display, network access or model downloads.
"""

import os
import sys
import threading
from pathlib import Path
from typing import Dict, List

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PyQt6.QtCore import QSettings
from PyQt6.QtGui import QColor, QImage
from PyQt6.QtWidgets import QApplication

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from parallax.cache import TranslationCache
from parallax.errors import OfflineUnavailableError, TranslationError
from parallax.models import Availability, RecognizedRegion, Rect, TextBlock
from parallax.settings import Settings


# ---------------------------------------------------------------------------
# Qt
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


def make_image(width: int, height: int, color: str = "#808080") -> QImage:
    image = QImage(width, height, QImage.Format.Format_RGB32)
    image.fill(QColor(color))
    return image


@pytest.fixture
def settings(tmp_path):
    qsettings = QSettings(str(tmp_path / "parallax.ini"), QSettings.Format.IniFormat)
    return Settings(qsettings)


# ---------------------------------------------------------------------------
# Translation fakes
# ---------------------------------------------------------------------------

class FakeOnlineTranslator:
    """Dictionary-backed online backend recording every request"""

    def __init__(self, translations: Dict[str, str] = None, failures: Dict[str, Exception] = None):
        self.translations = translations or {}
        self.failures = failures or {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def translate_text(self, text: str, target_lang: str) -> str:
        with self._lock:
            self.calls.append((text, target_lang))
        if text in self.failures:
            raise self.failures[text]
        return self.translations.get(text, f"[{target_lang}] {text}")


class FakeOfflineSession:
    def __init__(self, translator, source_locale, target_locale):
        self.translator = translator
        self.source_locale = source_locale
        self.target_locale = target_locale

    def availability(self):
        return self.translator.status

    def prepare(self):
        self.translator.loads += 1
        return self.translator.load_ok

    def download(self):
        self.translator.downloads += 1
        if self.translator.download_ok:
            self.translator.status = Availability.INSTALLED
            self.translator.load_ok = True
        return self.translator.download_ok

    def translate(self, text):
        self.translator.calls.append(text)
        if text in self.translator.unavailable:
            raise OfflineUnavailableError("model unloaded")
        if text in self.translator.failing:
            raise TranslationError(f"cannot translate {text}")
        return f"<{self.target_locale}>{text}"


class FakeOfflineTranslator:
    def __init__(self, status=Availability.INSTALLED, download_ok=True, failing=(),
                 load_ok=True, unavailable=()):
        self.status = status
        self.download_ok = download_ok
        self.load_ok = load_ok
        self.failing = set(failing)
        self.unavailable = set(unavailable)
        self.loads = 0
        self.calls: List[str] = []
        self.sessions: List[FakeOfflineSession] = []
        self.downloads = 0
        self.invalidations = 0

    def session(self, source_locale, target_locale):
        session = FakeOfflineSession(self, source_locale, target_locale)
        self.sessions.append(session)
        return session

    def invalidate_sessions(self):
        self.invalidations += 1


@pytest.fixture
def cache():
    return TranslationCache()


@pytest.fixture
def online():
    return FakeOnlineTranslator()


# ---------------------------------------------------------------------------
# Recognition / capture fakes
# ---------------------------------------------------------------------------

class FakeEngine:
    def __init__(self, regions: List[RecognizedRegion] = None, error: Exception = None):
        self.regions = regions or []
        self.error = error
        self.calls = []

    def recognize(self, image, languages, accurate=True):
        self.calls.append((image.shape, list(languages), accurate))
        if self.error is not None:
            raise self.error
        return self.regions


class FakeCapture:
    def __init__(self, image: QImage = None, error: Exception = None):
        self.image = image
        self.error = error
        self.calls = []

    def capture_display(self, index):
        self.calls.append(index)
        if self.error is not None:
            raise self.error
        return self.image


class FakeMeasurer:
    """Fixed-width glyph measurer: 10pt per character, 18pt per line"""

    family = "Test Sans"

    def __init__(self, char_width: float = 10.0, line_height: float = 18.0):
        self.char_width = char_width
        self.line_height = line_height
        self.calls = []

    def measure(self, text, font_size, max_width):
        self.calls.append((text, font_size, max_width))
        width = len(text) * self.char_width
        lines = max(1, int(-(-width // max_width)))
        return min(width, max_width), lines * self.line_height


def block(x, y, w, h, text) -> TextBlock:
    return TextBlock(rect=Rect(x, y, w, h), text=text)


