import logging
import threading
import time
from functools import partial
from typing import Callable, List, Optional

from PyQt6.QtCore import QThreadPool

from .cache import TranslationCache, make_key
from .errors import OfflineUnavailableError, TranslationError
from .models import Availability, DownloadDecision, PipelineResult, TextBlock, TranslationMode
from .offline_translator import (OfflineTranslationSession, OfflineTranslator, SourcePolicy,
                                 guess_source_locale, is_offline_supported, locale_from_code)
from .online_translator import OnlineTranslator

logger = logging.getLogger(__name__)

MAX_CONCURRENT_REQUESTS = 5

# (source_locale, target_locale) -> what the user wants to do about a missing pack
DecisionProvider = Callable[[str, str], DownloadDecision]


class _OnlineBatch:
    """Pre-sized, index-aligned output for one concurrent online batch"""

    def __init__(self, blocks: List[TextBlock], translate_one: Callable[[str], str]):
        self.blocks = blocks
        self.translate_one = translate_one
        self.results: List[Optional[TextBlock]] = [None] * len(blocks)
        self.has_error = False
        self._lock = threading.Lock()

    def run_one(self, index: int):
        block = self.blocks[index]
        try:
            translated = block.with_text(self.translate_one(block.text))
            failed = False
        except TranslationError as e:
            logger.warning(f"Translation error for block {index}: {type(e).__name__}: {e}")
            translated, failed = block, True
        except Exception as e:
            # Never let an exception escape a pool thread
            logger.error(f"Unexpected translation failure for block {index}: {e}")
            translated, failed = block, True

        with self._lock:
            self.results[index] = translated
            if failed:
                self.has_error = True


class TranslationOrchestrator:
    """Translates batches of text blocks through the online or on-device backend"""

    def __init__(self, cache: TranslationCache, online: OnlineTranslator,
                 offline: Optional[OfflineTranslator] = None,
                 decision_provider: Optional[DecisionProvider] = None,
                 source_policy: SourcePolicy = guess_source_locale,
                 offline_supported: Callable[[], bool] = is_offline_supported,
                 max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS):
        self.cache = cache
        self.online = online
        self.offline = offline
        self.decision_provider = decision_provider
        self.source_policy = source_policy
        self.offline_supported = offline_supported
        self.max_concurrent_requests = max_concurrent_requests

    def is_offline_available(self) -> bool:
        return self.offline is not None and self.offline_supported()

    def invalidate_offline_sessions(self):
        if self.offline is not None:
            self.offline.invalidate_sessions()

    def translate(self, blocks: List[TextBlock], target_language: str,
                  mode: TranslationMode = TranslationMode.ONLINE) -> PipelineResult:
        start_time = time.time()
        if mode == TranslationMode.OFFLINE and self.is_offline_available():
            result = self._translate_offline(blocks, target_language)
        else:
            if mode == TranslationMode.OFFLINE:
                logger.warning("Offline translation is not supported here, falling back to online")
            result = self.translate_online(blocks, target_language)

        logger.info(f"Translated {len(blocks)} blocks via {result.mode.value} in "
                    f"{time.time() - start_time:.2f}s (success={result.success}, "
                    f"cancelled={result.cancelled})")
        return result

    # Online

    def _translate_online_text(self, text: str, target_language: str) -> str:
        trimmed = text.strip()
        if not trimmed:
            return text

        key = make_key(trimmed, target_language, TranslationMode.ONLINE)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for: {trimmed[:30]}...")
            return cached

        translated = self.online.translate_text(trimmed, target_language)
        self.cache.put(key, translated)
        return translated

    def translate_online(self, blocks: List[TextBlock], target_language: str) -> PipelineResult:
        batch = _OnlineBatch(blocks, partial(self._translate_online_text,
                                             target_language=target_language))
        if blocks:
            pool = QThreadPool()
            pool.setMaxThreadCount(self.max_concurrent_requests)
            for index in range(len(blocks)):
                pool.start(partial(batch.run_one, index))
            pool.waitForDone()

        return PipelineResult(
            blocks=list(batch.results),
            success=not batch.has_error,
            mode=TranslationMode.ONLINE,
        )

    # Offline

    def _ask_download(self, source_locale: str, target_locale: str) -> DownloadDecision:
        if self.decision_provider is None:
            logger.info("No one to ask about the language pack; using online translation")
            return DownloadDecision.USE_ONLINE
        try:
            return self.decision_provider(source_locale, target_locale)
        except Exception as e:
            logger.error(f"Download prompt failed: {e}")
            return DownloadDecision.CANCEL

    def _translate_offline(self, blocks: List[TextBlock], target_language: str) -> PipelineResult:
        source_locale = self.source_policy(target_language)
        target_locale = locale_from_code(target_language)
        session = self.offline.session(source_locale, target_locale)

        try:
            status = session.availability()
        except Exception as e:
            logger.error(f"Language availability query failed: {e}")
            status = Availability.UNSUPPORTED

        if status == Availability.INSTALLED:
            if session.prepare():
                return self._run_offline_session(session, blocks, target_language)
            # Cached but unloadable (interrupted download, corrupt files): offer it again
            logger.warning("On-device model is cached but failed to load")
            status = Availability.INSTALLABLE

        if status == Availability.INSTALLABLE:
            decision = self._ask_download(source_locale, target_locale)
            if decision == DownloadDecision.DOWNLOAD:
                if session.download():
                    return self._run_offline_session(session, blocks, target_language)
                logger.warning("Language pack download failed; translation cancelled")
            elif decision == DownloadDecision.USE_ONLINE:
                return self.translate_online(blocks, target_language)
            return PipelineResult(blocks=list(blocks), success=False, cancelled=True,
                                  mode=TranslationMode.OFFLINE)

        logger.warning(f"Language pair {source_locale} -> {target_locale} not supported offline, "
                       f"falling back to online")
        return self.translate_online(blocks, target_language)

    def _run_offline_session(self, session: OfflineTranslationSession, blocks: List[TextBlock],
                             target_language: str) -> PipelineResult:
        results = []
        has_error = False
        unavailable = False

        for block in blocks:
            trimmed = block.text.strip()
            if unavailable:
                results.append(block)
                continue
            if not trimmed:
                results.append(block)
                continue

            key = make_key(trimmed, target_language, TranslationMode.OFFLINE)
            cached = self.cache.get(key)
            if cached is not None:
                results.append(block.with_text(cached))
                continue

            try:
                translated = session.translate(trimmed)
            except OfflineUnavailableError as e:
                # The model went away mid-batch; no point reloading it per block
                logger.error(f"On-device model unavailable, skipping remaining blocks: {e}")
                results.append(block)
                has_error = True
                unavailable = True
                continue
            except TranslationError as e:
                logger.warning(f"Offline translation error: {e}")
                results.append(block)
                has_error = True
                continue

            self.cache.put(key, translated)
            results.append(block.with_text(translated))

        return PipelineResult(blocks=results, success=not has_error, mode=TranslationMode.OFFLINE)
