import logging
import sys
from typing import List, Optional, Set

from PyQt6.QtCore import QObject, QThread, Qt, pyqtSignal, pyqtSlot
from PyQt6.QtGui import QAction, QActionGroup, QGuiApplication, QIcon
from PyQt6.QtWidgets import QApplication, QMenu, QMessageBox, QSystemTrayIcon

from .cache import TranslationCache
from .capture import ScreenCapture, get_screen
from .layout import OverlayLayoutEngine
from .logging_config import setup_logger
from .models import DownloadDecision, RunOutcome, RunStatus, TextBlock, TranslationMode
from .ocr import EasyOCREngine, TextBlockExtractor
from .offline_translator import OfflineTranslator
from .online_translator import OnlineTranslator
from .overlay import OverlayController
from .pipeline import ScreenTranslationPipeline
from .preprocess import ImageAccelerator, ImagePreprocessor
from .settings import SUPPORTED_LANGUAGES, Settings, language_name
from .translator import TranslationOrchestrator
from .workers import ModelWarmupWorker, PipelineWorker

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_MS = 5000


class DownloadPrompt(QObject):
    """Asks the user what to do about a missing on-device language pack.

    Callable from worker threads: the dialog itself always runs on the UI
    thread and the calling thread blocks until it is answered.
    """

    _requested = pyqtSignal(str, str)

    def __init__(self, parent: QObject = None):
        super().__init__(parent)
        self._answer = DownloadDecision.CANCEL
        self._requested.connect(self._ask, Qt.ConnectionType.BlockingQueuedConnection)

    def __call__(self, source_locale: str, target_locale: str) -> DownloadDecision:
        if QThread.currentThread() == self.thread():
            self._ask(source_locale, target_locale)
        else:
            self._requested.emit(source_locale, target_locale)
        return self._answer

    @pyqtSlot(str, str)
    def _ask(self, source_locale: str, target_locale: str):
        box = QMessageBox()
        box.setIcon(QMessageBox.Icon.Information)
        box.setWindowTitle("Language pack required")
        box.setText(f"Offline translation from {source_locale} to {target_locale} "
                    f"needs a language model that is not installed yet.")
        download_btn = box.addButton("Download", QMessageBox.ButtonRole.AcceptRole)
        online_btn = box.addButton("Use Online", QMessageBox.ButtonRole.ActionRole)
        box.addButton("Cancel", QMessageBox.ButtonRole.RejectRole)
        box.exec()

        clicked = box.clickedButton()
        if clicked == download_btn:
            self._answer = DownloadDecision.DOWNLOAD
        elif clicked == online_btn:
            self._answer = DownloadDecision.USE_ONLINE
        else:
            self._answer = DownloadDecision.CANCEL


def build_pipeline(settings: Settings, decision_provider=None):
    """Wire the process-wide services together"""
    cache = TranslationCache()
    offline = OfflineTranslator()
    orchestrator = TranslationOrchestrator(
        cache=cache,
        online=OnlineTranslator(),
        offline=offline,
        decision_provider=decision_provider,
    )
    pipeline = ScreenTranslationPipeline(
        settings=settings,
        capture=ScreenCapture(),
        preprocessor=ImagePreprocessor(ImageAccelerator()),
        extractor=TextBlockExtractor(EasyOCREngine()),
        orchestrator=orchestrator,
    )
    return pipeline, offline


class ParallaxApp(QObject):
    """Tray icon shell driving the translation pipeline"""

    def __init__(self, settings: Settings = None):
        super().__init__()
        self.settings = settings or Settings()
        self.download_prompt = DownloadPrompt(self)
        self.pipeline, self.offline = build_pipeline(self.settings, self.download_prompt)
        self.overlay = OverlayController(OverlayLayoutEngine(), self)
        self.workers: Set[QThread] = set()
        self.warmup_worker: Optional[ModelWarmupWorker] = None

        # Recognized blocks of the overlay on screen, for re-translation
        self.last_source_blocks: Optional[List[TextBlock]] = None
        # Mode changed while a run was in flight
        self.retranslate_pending = False

        self.setup_tray_icon()
        QApplication.instance().aboutToQuit.connect(self.shutdown)

    @property
    def is_processing(self) -> bool:
        return bool(self.workers)

    def setup_tray_icon(self):
        """Initialize system tray icon and menu"""
        self.tray_icon = QSystemTrayIcon(self)
        self.tray_icon.setIcon(QIcon.fromTheme("edit-find"))
        self.tray_icon.setToolTip("Parallax")

        self.tray_menu = QMenu()
        translate_action = self.tray_menu.addAction("Translate Screen")
        translate_action.triggered.connect(self.toggle_translation)
        self.tray_menu.addSeparator()

        language_menu = self.tray_menu.addMenu("Target Language")
        self.language_group = QActionGroup(self)
        for code, name, native in SUPPORTED_LANGUAGES:
            action = QAction(f"{native} ({name})", self, checkable=True)
            action.setData(code)
            action.setChecked(code == self.settings.target_language)
            self.language_group.addAction(action)
            language_menu.addAction(action)
        self.language_group.triggered.connect(self.select_language)

        mode_menu = self.tray_menu.addMenu("Translation Mode")
        self.mode_group = QActionGroup(self)
        for mode, title in ((TranslationMode.ONLINE, "Online (API)"),
                            (TranslationMode.OFFLINE, "Offline (on-device)")):
            action = QAction(title, self, checkable=True)
            action.setData(mode.value)
            action.setChecked(mode == self.settings.translation_mode)
            if mode == TranslationMode.OFFLINE and not self.pipeline.orchestrator.is_offline_available():
                action.setEnabled(False)
                action.setText(title + " (unavailable)")
            self.mode_group.addAction(action)
            mode_menu.addAction(action)
        self.mode_group.triggered.connect(self.select_mode)

        display_menu = self.tray_menu.addMenu("Display")
        self.display_group = QActionGroup(self)
        for index, screen in enumerate(QGuiApplication.screens()):
            action = QAction(f"{index + 1}. {screen.name()}", self, checkable=True)
            action.setData(index)
            action.setChecked(index == self.settings.display_index)
            self.display_group.addAction(action)
            display_menu.addAction(action)
        self.display_group.triggered.connect(self.select_display)

        self.tray_menu.addSeparator()
        about_action = self.tray_menu.addAction("About")
        about_action.triggered.connect(self.show_about)
        quit_action = self.tray_menu.addAction("Quit")
        quit_action.triggered.connect(QApplication.instance().quit)

        self.tray_icon.setContextMenu(self.tray_menu)
        self.tray_icon.activated.connect(self._on_tray_activated)
        self.tray_icon.show()

    def _on_tray_activated(self, reason):
        if reason == QSystemTrayIcon.ActivationReason.Trigger:
            self.toggle_translation()

    def _set_processing_icon(self):
        self.tray_icon.setToolTip("Parallax - translating..." if self.is_processing else "Parallax")

    # Menu handlers

    def select_language(self, action: QAction):
        self.settings.target_language = action.data()
        self.pipeline.orchestrator.invalidate_offline_sessions()
        logger.info(f"Target language changed to: {language_name(action.data())}")

    def select_mode(self, action: QAction):
        mode = TranslationMode(action.data())
        self.settings.translation_mode = mode
        self.pipeline.orchestrator.invalidate_offline_sessions()
        logger.info(f"Translation mode changed to: {mode.value}")

        if mode == TranslationMode.OFFLINE:
            self._warm_up_offline_model()
        self._retranslate_visible()

    def _retranslate_visible(self):
        if not (self.overlay.is_visible and self.last_source_blocks):
            self.retranslate_pending = False
            return
        if self.is_processing:
            self.retranslate_pending = True
            return
        self.retranslate_pending = False
        self._start_worker(blocks=self.last_source_blocks)

    def select_display(self, action: QAction):
        self.settings.display_index = int(action.data())
        logger.info(f"Selected display: {int(action.data()) + 1}")

    def _warm_up_offline_model(self):
        if self.warmup_worker is not None and self.warmup_worker.isRunning():
            return
        self.warmup_worker = ModelWarmupWorker(self.offline)
        self.warmup_worker.warmup_finished.connect(self._on_warmup_finished)
        self.warmup_worker.start()

    def _on_warmup_finished(self, ok: bool, error: str):
        if ok:
            logger.info("On-device model ready")
        else:
            logger.info(f"On-device model not preloaded: {error}")

    # Translation flow

    def toggle_translation(self):
        if self.overlay.is_visible:
            # Anything still running belongs to the overlay being dismissed
            self.pipeline.next_generation()
            self.overlay.hide()
        else:
            self.perform_translation()

    def perform_translation(self):
        if self.is_processing:
            return
        self._start_worker()

    def _start_worker(self, blocks: Optional[List[TextBlock]] = None):
        snapshot = self.settings.snapshot()
        generation = self.pipeline.next_generation()
        worker = PipelineWorker(self.pipeline, snapshot, generation, blocks)
        worker.status_update.connect(lambda msg: logger.debug(msg))
        worker.run_finished.connect(self._on_run_finished)
        worker.finished.connect(lambda w=worker: self._on_worker_done(w))
        self.workers.add(worker)
        self._set_processing_icon()
        worker.start()

    def _on_worker_done(self, worker: QThread):
        # Released only once the thread has actually stopped
        self.workers.discard(worker)
        worker.deleteLater()
        self._set_processing_icon()
        if self.retranslate_pending and not self.is_processing:
            self._retranslate_visible()

    def _on_run_finished(self, outcome: RunOutcome):
        if not self.pipeline.is_current(outcome.generation):
            logger.info(f"Discarding stale result of run {outcome.generation}")
            return

        if outcome.status == RunStatus.CAPTURE_FAILED:
            self.show_error("Screen capture failed", outcome.message)
        elif outcome.status == RunStatus.NO_TEXT:
            self.show_error(outcome.message, "")
        elif outcome.status == RunStatus.FAILED:
            self.show_error("Translation failed", outcome.message)
        elif outcome.status == RunStatus.CANCELLED:
            logger.info("Translation cancelled")
        else:
            self.last_source_blocks = outcome.source_blocks
            if self.overlay.is_visible:
                self.overlay.update_translations(outcome.result.blocks)
            else:
                self.overlay.show(outcome.result.blocks, get_screen(self.settings.display_index))
            if not outcome.result.success:
                logger.warning("Some translations failed")
            logger.info("Translation done")

    def shutdown(self):
        """Stop accepting results and wait for worker threads before the app exits"""
        self.pipeline.next_generation()
        self.retranslate_pending = False
        threads = list(self.workers)
        if self.warmup_worker is not None:
            threads.append(self.warmup_worker)
        for thread in threads:
            if thread.isRunning() and not thread.wait(SHUTDOWN_TIMEOUT_MS):
                logger.warning(f"Worker {type(thread).__name__} still running at exit")
        self.overlay.hide()

    def show_about(self):
        QMessageBox.about(
            None,
            "About Parallax",
            "Parallax\n\nCaptures the screen, recognizes text and draws the "
            "translation over the original.\n\nOnline translation uses Google "
            "Translate; offline translation uses the NLLB-200 model.",
        )

    def show_error(self, title: str, message: str):
        box = QMessageBox()
        box.setIcon(QMessageBox.Icon.Warning)
        box.setWindowTitle("Parallax")
        box.setText(title)
        if message:
            box.setInformativeText(message)
        box.exec()


def main():
    """Main application entry point"""
    setup_logger()
    app = QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(False)

    if not QSystemTrayIcon.isSystemTrayAvailable():
        logger.warning("System tray not available")

    tray_app = ParallaxApp()
    logger.info("Ready")
    sys.exit(app.exec())
