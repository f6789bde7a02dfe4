import threading
from typing import Dict, List, Tuple

from PyQt6.QtCore import QRectF, Qt
from PyQt6.QtGui import QFont, QFontMetricsF

from .models import DisplayBlock, Rect, TextBlock

MIN_FONT_SIZE = 11
MAX_FONT_SIZE = 26
FONT_SCALE = 0.75
MIN_WRAP_WIDTH = 200
PADDING = 6
DEFAULT_FONT_FAMILY = "Noto Sans CJK SC"

WRAP_FLAGS = Qt.AlignmentFlag.AlignLeft.value | Qt.TextFlag.TextWordWrap.value


class TextMeasurer:
    """Measures the bounding size of wrapped text"""

    family = DEFAULT_FONT_FAMILY

    def measure(self, text: str, font_size: float, max_width: float) -> Tuple[float, float]:
        raise NotImplementedError


class QtTextMeasurer(TextMeasurer):
    """QFontMetricsF based measurer. Needs a QGuiApplication."""

    def __init__(self, family: str = DEFAULT_FONT_FAMILY):
        self.family = family
        self._fonts: Dict[int, QFont] = {}
        self._lock = threading.Lock()

    def font(self, size: float) -> QFont:
        rounded = int(round(size))
        with self._lock:
            font = self._fonts.get(rounded)
            if font is None:
                # Qt substitutes the default family when this one is missing
                font = QFont(self.family)
                font.setPointSize(rounded)
                self._fonts[rounded] = font
            return font

    def measure(self, text: str, font_size: float, max_width: float) -> Tuple[float, float]:
        metrics = QFontMetricsF(self.font(font_size))
        bounds = metrics.boundingRect(QRectF(0, 0, max_width, 1_000_000), WRAP_FLAGS, text)
        return bounds.width(), bounds.height()


def font_size_for_height(height: float) -> int:
    return int(round(min(max(height * FONT_SCALE, MIN_FONT_SIZE), MAX_FONT_SIZE)))


class OverlayLayoutEngine:
    """Turns pixel-space text blocks into screen-space display blocks.

    Blocks are laid out independently; overlapping results are not moved
    apart.
    """

    def __init__(self, measurer: TextMeasurer = None, padding: float = PADDING):
        self.measurer = measurer or QtTextMeasurer()
        self.padding = padding

    def layout(self, blocks: List[TextBlock], scale_factor: float,
               screen_height: float) -> List[DisplayBlock]:
        scale = scale_factor if scale_factor > 0 else 1.0
        return [self.layout_block(block, scale, screen_height) for block in blocks]

    def layout_block(self, block: TextBlock, scale: float, screen_height: float) -> DisplayBlock:
        # Pixels (top-left origin) -> points (bottom-left origin)
        x = block.rect.x / scale
        original_width = block.rect.width / scale
        original_height = block.rect.height / scale
        y = screen_height - block.rect.y / scale - original_height

        font_size = font_size_for_height(original_height)
        wrap_width = max(original_width, MIN_WRAP_WIDTH)
        text_width, text_height = self.measurer.measure(block.text, font_size, wrap_width)

        width = max(original_width, text_width + self.padding * 2)
        height = max(original_height, text_height + self.padding)
        # Grow downward so the top edge stays on the detected line
        y -= height - original_height

        return DisplayBlock(
            rect=Rect(x, y, width, height),
            text=block.text,
            font_size=font_size,
            font_family=self.measurer.family,
            wrap_width=wrap_width,
            padding=self.padding,
        )
