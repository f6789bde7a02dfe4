import logging
import threading
import time
from typing import List, Optional

from .capture import ScreenCapture
from .errors import CaptureError
from .models import RunOutcome, RunStatus, TextBlock
from .ocr import TextBlockExtractor
from .preprocess import ImagePreprocessor
from .settings import Settings, SettingsSnapshot
from .translator import TranslationOrchestrator

logger = logging.getLogger(__name__)

NO_TEXT_MESSAGE = "No text detected"
CAPTURE_FAILED_MESSAGE = ("Screen capture failed. Make sure screen recording is allowed "
                          "for this application and try again.")


class ScreenTranslationPipeline:
    """capture -> preprocess -> extract -> translate for one user action.

    Every run takes a new generation number. A completion whose generation
    is no longer current belongs to a superseded run and should be dropped.
    """

    def __init__(self, settings: Settings, capture: ScreenCapture, preprocessor: ImagePreprocessor,
                 extractor: TextBlockExtractor, orchestrator: TranslationOrchestrator):
        self.settings = settings
        self.capture = capture
        self.preprocessor = preprocessor
        self.extractor = extractor
        self.orchestrator = orchestrator
        self._generation = 0
        self._generation_lock = threading.Lock()

    def next_generation(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._generation_lock:
            return generation == self._generation

    def run(self, snapshot: Optional[SettingsSnapshot] = None,
            generation: Optional[int] = None) -> RunOutcome:
        workflow_start = time.time()
        generation = generation if generation is not None else self.next_generation()
        snapshot = snapshot or self.settings.snapshot()

        capture_start = time.time()
        try:
            image = self.capture.capture_display(snapshot.display_index)
        except CaptureError as e:
            logger.error(f"Capture failed: {e}")
            return RunOutcome(RunStatus.CAPTURE_FAILED, generation, message=CAPTURE_FAILED_MESSAGE)
        capture_time = time.time() - capture_start
        image_size = (image.width(), image.height())

        preprocess_start = time.time()
        processed = self.preprocessor.preprocess(image, snapshot.use_acceleration)
        preprocess_time = time.time() - preprocess_start

        ocr_start = time.time()
        blocks = self.extractor.extract(processed, image_size)
        ocr_time = time.time() - ocr_start

        if not blocks:
            logger.info(f"OCR finished in {ocr_time:.2f}s: {NO_TEXT_MESSAGE}")
            return RunOutcome(RunStatus.NO_TEXT, generation, message=NO_TEXT_MESSAGE,
                              image_size=image_size)

        translate_start = time.time()
        outcome = self._translate(blocks, snapshot, generation)
        outcome.image_size = image_size
        translate_time = time.time() - translate_start

        logger.info(f"Workflow stats: Capture: {capture_time:.2f}s, Preprocess: {preprocess_time:.2f}s, "
                    f"OCR: {ocr_time:.2f}s, Translate: {translate_time:.2f}s, "
                    f"Total: {time.time() - workflow_start:.2f}s")
        return outcome

    def retranslate(self, blocks: List[TextBlock], snapshot: Optional[SettingsSnapshot] = None,
                    generation: Optional[int] = None) -> RunOutcome:
        """Translate previously recognized blocks again, e.g. after a mode switch"""
        generation = generation if generation is not None else self.next_generation()
        snapshot = snapshot or self.settings.snapshot()
        return self._translate(blocks, snapshot, generation)

    def _translate(self, blocks: List[TextBlock], snapshot: SettingsSnapshot,
                   generation: int) -> RunOutcome:
        logger.info(f"Translating {len(blocks)} blocks -> {snapshot.target_language} "
                    f"({snapshot.translation_mode.value})")
        result = self.orchestrator.translate(blocks, snapshot.target_language,
                                             snapshot.translation_mode)
        if result.cancelled:
            logger.info("Translation cancelled")
            return RunOutcome(RunStatus.CANCELLED, generation, source_blocks=blocks, result=result,
                              message="Translation cancelled")
        if not result.success:
            logger.warning("Some translations failed")
        return RunOutcome(RunStatus.TRANSLATED, generation, source_blocks=blocks, result=result)
