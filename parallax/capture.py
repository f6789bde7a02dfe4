import logging
import os
import shutil
import subprocess
import tempfile
from typing import Optional

from PyQt6.QtCore import QRect
from PyQt6.QtGui import QGuiApplication, QImage, QScreen

from .errors import CaptureError
from .imaging import image_from_bytes

logger = logging.getLogger(__name__)


def get_screen(index: int) -> Optional[QScreen]:
    """Screen for a display index, falling back to the primary screen"""
    screens = QGuiApplication.screens()
    if 0 <= index < len(screens):
        return screens[index]
    return QGuiApplication.primaryScreen()


def get_virtual_desktop_geometry() -> QRect:
    """Geometry of the entire virtual desktop (all screens combined)"""
    total_geo = QRect()
    for screen in QGuiApplication.screens():
        total_geo = total_geo.united(screen.geometry())
    return total_geo


def is_image_empty(img: QImage) -> bool:
    """Completely uniform frames usually mean a failed Wayland capture"""
    if img is None or img.isNull():
        return True
    w, h = img.width(), img.height()
    if w < 2 or h < 2:
        return True

    points = [
        img.pixelColor(0, 0),
        img.pixelColor(w - 1, 0),
        img.pixelColor(0, h - 1),
        img.pixelColor(w - 1, h - 1),
        img.pixelColor(w // 2, h // 2),
    ]
    first = points[0]
    return all(p == first for p in points)


class ScreenCapture:
    """Captures a display as a QImage using the best backend for the session"""

    def capture_display(self, index: int) -> QImage:
        """Capture one display at device-pixel resolution; raises CaptureError"""
        screen = get_screen(index)
        if screen is None:
            raise CaptureError("No display available")

        image = None
        if os.environ.get("XDG_SESSION_TYPE") == "wayland":
            desktop_image = self._capture_wayland()
            if desktop_image is not None:
                image = self._crop_to_screen(desktop_image, screen)

        if image is None:
            logger.debug("Falling back to Qt backend...")
            image = self._capture_qt(screen)

        if image is None:
            raise CaptureError("Screen capture failed; check screen recording permission")
        return image

    def _capture_wayland(self) -> Optional[QImage]:
        desktop = os.environ.get("XDG_CURRENT_DESKTOP", "").lower()
        logger.debug(f"Wayland detected, desktop: {desktop}")
        if "kde" in desktop:
            image = self._capture_with_file(["spectacle", "-b", "-n", "-f", "-o"])
            if image is not None:
                return image
        if "gnome" in desktop:
            image = self._capture_with_file(["gnome-screenshot", "-f"])
            if image is not None:
                return image
        return self._capture_grim()

    @staticmethod
    def _capture_with_file(command) -> Optional[QImage]:
        """Run a screenshot tool that writes its output to a file path argument"""
        if shutil.which(command[0]) is None:
            return None
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_path = os.path.join(tmp_dir, "capture.png")
            try:
                result = subprocess.run(command + [tmp_path], capture_output=True, timeout=5)
            except (OSError, subprocess.SubprocessError) as e:
                logger.debug(f"{command[0]} capture error: {e}")
                return None
            if result.returncode != 0 or not os.path.exists(tmp_path):
                return None
            image = QImage(tmp_path)
        if is_image_empty(image):
            return None
        logger.debug(f"Captured screen via {command[0]}")
        return image

    @staticmethod
    def _capture_grim() -> Optional[QImage]:
        if shutil.which("grim") is None:
            return None
        try:
            result = subprocess.run(["grim", "-"], capture_output=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"grim capture error: {e}")
            return None
        if result.returncode != 0:
            return None
        image = image_from_bytes(result.stdout)
        if is_image_empty(image):
            return None
        logger.debug("Captured screen via grim")
        return image

    @staticmethod
    def _capture_qt(screen: QScreen) -> Optional[QImage]:
        """Works on X11; usually returns black on Wayland"""
        pixmap = screen.grabWindow(0)
        if pixmap.isNull():
            return None
        image = pixmap.toImage()
        if is_image_empty(image):
            logger.debug("Qt capture returned empty/black image")
            return None
        return image

    @staticmethod
    def _crop_to_screen(desktop_image: QImage, screen: QScreen) -> Optional[QImage]:
        """Cut one screen out of a whole-desktop capture"""
        ratio = screen.devicePixelRatio()
        origin = get_virtual_desktop_geometry().topLeft()
        geo = screen.geometry().translated(-origin)
        rect = QRect(int(geo.x() * ratio), int(geo.y() * ratio),
                     int(geo.width() * ratio), int(geo.height() * ratio))
        rect = rect.intersected(desktop_image.rect())
        if rect.isEmpty():
            logger.warning(f"Screen {screen.name()} is outside the captured desktop")
            return None
        return desktop_image.copy(rect)
