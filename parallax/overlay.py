import logging
from typing import List, Optional

from PyQt6.QtCore import QObject, QRectF, Qt
from PyQt6.QtGui import QColor, QFont, QGuiApplication, QPainter, QPaintEvent, QScreen
from PyQt6.QtWidgets import QWidget

from .layout import WRAP_FLAGS, OverlayLayoutEngine
from .models import DisplayBlock, Rect, TextBlock

logger = logging.getLogger(__name__)

BACKGROUND = QColor(0, 0, 0, int(0.88 * 255))
CORNER_RADIUS = 4


class OverlayWindow(QWidget):
    """Frameless, click-through, always-on-top window painting display blocks"""

    def __init__(self, screen: QScreen):
        super().__init__()
        self.setWindowFlags(
            Qt.WindowType.Window
            | Qt.WindowType.Tool
            | Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.NoDropShadowWindowHint
            | Qt.WindowType.WindowDoesNotAcceptFocus
            | Qt.WindowType.WindowTransparentForInput
        )
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground)
        self.setAttribute(Qt.WidgetAttribute.WA_NoSystemBackground)
        self.setAttribute(Qt.WidgetAttribute.WA_ShowWithoutActivating)
        self.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents)

        self.target_screen = screen
        self.setGeometry(screen.geometry())
        self.display_blocks: List[DisplayBlock] = []

    def set_blocks(self, display_blocks: List[DisplayBlock]):
        """Replace all content"""
        self.display_blocks = list(display_blocks)
        self.update()

    def paintEvent(self, event: QPaintEvent):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_Source)
        painter.fillRect(event.rect(), Qt.GlobalColor.transparent)
        painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_SourceOver)

        dirty = event.rect()
        dirty_rect = Rect(dirty.x(), dirty.y(), dirty.width(), dirty.height())
        screen_height = self.height()

        for block in self.display_blocks:
            rect = block.to_top_left(screen_height)
            if not rect.intersects(dirty_rect):
                continue

            painter.setPen(Qt.PenStyle.NoPen)
            painter.setBrush(BACKGROUND)
            painter.drawRoundedRect(rect.to_qrectf(), CORNER_RADIUS, CORNER_RADIUS)

            font = QFont(block.font_family)
            font.setPointSize(int(block.font_size))
            painter.setFont(font)
            painter.setPen(QColor(255, 255, 255))
            text_rect = QRectF(rect.x + block.padding, rect.y + block.padding / 2,
                               rect.width - block.padding * 2, rect.height - block.padding)
            painter.drawText(text_rect, WRAP_FLAGS, block.text)

        painter.end()


class OverlayController(QObject):
    """Owns the overlay window and re-lays-out blocks for its screen"""

    def __init__(self, layout_engine: OverlayLayoutEngine, parent: QObject = None):
        super().__init__(parent)
        self.layout_engine = layout_engine
        self.window: Optional[OverlayWindow] = None
        self.current_screen: Optional[QScreen] = None

    @property
    def is_visible(self) -> bool:
        return self.window is not None and self.window.isVisible()

    def layout_for_screen(self, blocks: List[TextBlock], screen: QScreen) -> List[DisplayBlock]:
        return self.layout_engine.layout(blocks, screen.devicePixelRatio(),
                                         screen.geometry().height())

    def show(self, blocks: List[TextBlock], screen: QScreen = None):
        self.hide()
        screen = screen or QGuiApplication.primaryScreen()
        if screen is None:
            logger.warning("No screen to show the overlay on")
            return

        self.window = OverlayWindow(screen)
        self.current_screen = screen
        self.window.set_blocks(self.layout_for_screen(blocks, screen))
        self.window.show()
        self.window.raise_()
        logger.info(f"Overlay showing {len(blocks)} blocks on {screen.name()}")

    def update_translations(self, blocks: List[TextBlock]):
        """Swap the overlay content without capturing again"""
        if self.window is None or self.current_screen is None:
            return
        self.window.set_blocks(self.layout_for_screen(blocks, self.current_screen))

    def hide(self):
        if self.window is not None:
            self.window.hide()
            self.window.deleteLater()
        self.window = None
        self.current_screen = None
