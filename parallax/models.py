from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from PyQt6.QtCore import QRectF


class TranslationMode(Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class Availability(Enum):
    """Install state of an on-device language pair"""
    INSTALLED = "installed"
    INSTALLABLE = "installable"
    UNSUPPORTED = "unsupported"


class DownloadDecision(Enum):
    DOWNLOAD = "download"
    USE_ONLINE = "use_online"
    CANCEL = "cancel"


class RunStatus(Enum):
    TRANSLATED = "translated"
    CAPTURE_FAILED = "capture_failed"
    NO_TEXT = "no_text"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle. Origin convention depends on the owner."""
    x: float
    y: float
    width: float
    height: float

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def scaled(self, sx: float, sy: float) -> "Rect":
        return Rect(self.x * sx, self.y * sy, self.width * sx, self.height * sy)

    def intersects(self, other: "Rect") -> bool:
        return (self.x < other.max_x and other.x < self.max_x and
                self.y < other.max_y and other.y < self.max_y)

    def to_qrectf(self) -> QRectF:
        return QRectF(self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class TextBlock:
    """One detected text region in source-image pixels (top-left origin)"""
    rect: Rect
    text: str

    def with_text(self, text: str) -> "TextBlock":
        return TextBlock(rect=self.rect, text=text)


@dataclass(frozen=True)
class DisplayBlock:
    """Render-ready block in screen points, bottom-left origin"""
    rect: Rect
    text: str
    font_size: float
    font_family: str
    wrap_width: float
    padding: float

    def to_top_left(self, screen_height: float) -> Rect:
        """Flip into the top-left coordinate space Qt windows paint in"""
        return Rect(self.rect.x, screen_height - self.rect.y - self.rect.height,
                    self.rect.width, self.rect.height)


@dataclass
class PipelineResult:
    """Translated batch, index-aligned with the source blocks"""
    blocks: List[TextBlock]
    success: bool
    cancelled: bool = False
    mode: Optional[TranslationMode] = None


@dataclass
class RecognizedRegion:
    """Engine output: normalized box (0-1, bottom-left origin) and ranked candidates"""
    box: Rect
    candidates: List[str] = field(default_factory=list)


@dataclass
class RunOutcome:
    status: RunStatus
    generation: int
    source_blocks: List[TextBlock] = field(default_factory=list)
    result: Optional[PipelineResult] = None
    message: str = ""
    image_size: Tuple[int, int] = (0, 0)
