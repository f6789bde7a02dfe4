"""Tests for display capture helpers."""

import pytest
from PyQt6.QtGui import QColor, QGuiApplication

from conftest import make_image
from parallax.capture import ScreenCapture, get_screen, is_image_empty
from parallax.errors import CaptureError


class TestIsImageEmpty:

    def test_uniform_frame_is_empty(self):
        assert is_image_empty(make_image(64, 64, "#000000"))

    def test_frame_with_content(self):
        image = make_image(64, 64, "#000000")
        image.setPixelColor(32, 32, QColor("#ffffff"))
        assert not is_image_empty(image)

    def test_tiny_frame(self):
        assert is_image_empty(make_image(1, 1))


class TestScreens:

    def test_out_of_range_index_uses_primary(self):
        assert get_screen(99) is QGuiApplication.primaryScreen()


class TestScreenCapture:

    def test_failed_backends_raise(self, monkeypatch):
        monkeypatch.delenv("XDG_SESSION_TYPE", raising=False)
        monkeypatch.setattr(ScreenCapture, "_capture_qt", staticmethod(lambda screen: None))
        with pytest.raises(CaptureError):
            ScreenCapture().capture_display(0)

    def test_qt_backend_image_is_returned(self, monkeypatch):
        frame = make_image(40, 30)
        frame.setPixelColor(1, 1, QColor("#ff0000"))
        monkeypatch.delenv("XDG_SESSION_TYPE", raising=False)
        monkeypatch.setattr(ScreenCapture, "_capture_qt", staticmethod(lambda screen: frame))
        assert ScreenCapture().capture_display(0) is frame
