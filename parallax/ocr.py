import logging
import time
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
from PyQt6.QtGui import QImage

from .errors import RecognitionError
from .imaging import qimage_to_array
from .models import RecognizedRegion, Rect, TextBlock

logger = logging.getLogger(__name__)

try:
    import easyocr
except ImportError:
    easyocr = None

RECOGNITION_LANGUAGES = ["en-US", "zh-Hans", "zh-Hant", "ja", "ko"]

# Locale hints -> EasyOCR language codes
EASYOCR_CODES = {
    "en": "en",
    "en-US": "en",
    "zh-Hans": "ch_sim",
    "zh-Hant": "ch_tra",
    "zh": "ch_sim",
    "ja": "ja",
    "ko": "ko",
}

# EasyOCR can only pair these scripts with English
_ENGLISH_ONLY_COMPANIONS = {"ch_sim", "ch_tra", "ja", "ko"}

MIN_CONFIDENCE = 0.2


def easyocr_languages(hints: Sequence[str]) -> List[str]:
    """Reduce locale hints to a language list EasyOCR accepts together"""
    codes = []
    for hint in hints:
        code = EASYOCR_CODES.get(hint)
        if code and code not in codes:
            codes.append(code)

    cjk = [c for c in codes if c in _ENGLISH_ONLY_COMPANIONS]
    if len(cjk) > 1:
        logger.debug(f"EasyOCR cannot combine {cjk}; using {cjk[0]}")
        codes = [c for c in codes if c not in _ENGLISH_ONLY_COMPANIONS or c == cjk[0]]
    if "en" not in codes:
        codes.append("en")
    # EasyOCR loads the first script's model as the primary one
    return sorted(codes, key=lambda c: c == "en")


class RecognitionEngine:
    """Interface of an external text recognition engine"""

    def recognize(self, image: np.ndarray, languages: Sequence[str],
                  accurate: bool = True) -> List[RecognizedRegion]:
        raise NotImplementedError


class EasyOCREngine(RecognitionEngine):
    """EasyOCR adapter returning normalized, bottom-left-origin boxes"""

    def __init__(self, gpu: Optional[bool] = None, min_confidence: float = MIN_CONFIDENCE):
        self.gpu = torch.cuda.is_available() if gpu is None else gpu
        self.min_confidence = min_confidence
        self.reader = None
        self._current_langs: List[str] = []

    def _init_reader(self, langs: List[str]):
        if self.reader is not None and self._current_langs == langs:
            return
        if easyocr is None:
            raise RecognitionError("EasyOCR is not installed")
        try:
            logger.info(f"Initializing EasyOCR with {langs} (gpu={self.gpu})...")
            start_time = time.time()
            self.reader = easyocr.Reader(langs, gpu=self.gpu)
            self._current_langs = langs
            logger.info(f"EasyOCR initialized in {time.time() - start_time:.2f}s")
        except Exception as e:
            self.reader = None
            raise RecognitionError(f"Failed to initialize EasyOCR: {e}") from e

    def recognize(self, image: np.ndarray, languages: Sequence[str],
                  accurate: bool = True) -> List[RecognizedRegion]:
        self._init_reader(easyocr_languages(languages))
        height, width = image.shape[:2]
        if width == 0 or height == 0:
            return []

        try:
            results = self.reader.readtext(
                image,
                decoder="beamsearch" if accurate else "greedy",
                detail=1,
            )
            regions = []
            for bbox, text, prob in results:
                # bbox is [[x0, y0], [x1, y1], [x2, y2], [x3, y3]] in pixels
                x = min(p[0] for p in bbox)
                y = min(p[1] for p in bbox)
                w = max(p[0] for p in bbox) - x
                h = max(p[1] for p in bbox) - y
                box = Rect(x / width, 1.0 - (y + h) / height, w / width, h / height)
                candidates = [text] if prob >= self.min_confidence and text.strip() else []
                regions.append(RecognizedRegion(box=box, candidates=candidates))
        except Exception as e:
            raise RecognitionError(str(e)) from e
        return regions


def normalized_to_pixels(box: Rect, width: int, height: int) -> Rect:
    """Bottom-left normalized box -> top-left pixel rect"""
    return Rect(
        box.x * width,
        (1.0 - box.y - box.height) * height,
        box.width * width,
        box.height * height,
    )


class TextBlockExtractor:
    """Runs recognition on a processed frame and maps results to original pixels"""

    def __init__(self, engine: RecognitionEngine, languages: Sequence[str] = None,
                 accurate: bool = True):
        self.engine = engine
        self.languages = list(languages or RECOGNITION_LANGUAGES)
        self.accurate = accurate

    def extract(self, image: QImage, original_size: Optional[Tuple[int, int]] = None) -> List[TextBlock]:
        width, height = image.width(), image.height()
        if image.isNull() or width == 0 or height == 0:
            return []

        orig_w, orig_h = original_size or (width, height)
        sx, sy = orig_w / width, orig_h / height

        start_time = time.time()
        try:
            regions = self.engine.recognize(qimage_to_array(image), self.languages, self.accurate)
        except RecognitionError as e:
            logger.error(f"OCR request failed: {e}")
            return []
        except Exception as e:
            logger.error(f"OCR engine error: {type(e).__name__}: {e}")
            return []

        blocks = []
        for region in regions:
            if not region.candidates or not region.candidates[0].strip():
                continue
            rect = normalized_to_pixels(region.box, width, height)
            if (sx, sy) != (1.0, 1.0):
                rect = rect.scaled(sx, sy)
            blocks.append(TextBlock(rect=rect, text=region.candidates[0]))

        logger.info(f"OCR detected {len(regions)} regions, {len(blocks)} kept in "
                    f"{time.time() - start_time:.2f}s")
        return blocks
