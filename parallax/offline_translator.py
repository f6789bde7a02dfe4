import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .errors import OfflineUnavailableError, TranslationError
from .models import Availability

logger = logging.getLogger(__name__)

try:
    import torch
    from huggingface_hub import try_to_load_from_cache
    from transformers import AutoModelForSeq2SeqLM, AutoTokenizer
except ImportError:
    torch = None
    try_to_load_from_cache = None
    AutoModelForSeq2SeqLM = None
    AutoTokenizer = None

DEFAULT_MODEL = "facebook/nllb-200-distilled-600M"
WEIGHT_FILES = ("model.safetensors", "pytorch_model.bin")

# Target language code -> locale identifier
LOCALES = {
    "zh": "zh-Hans",
    "en": "en",
    "ja": "ja",
    "ko": "ko",
    "fr": "fr",
    "de": "de",
    "es": "es",
    "ru": "ru",
    "pt": "pt",
    "it": "it",
    "ar": "ar",
    "th": "th",
    "vi": "vi",
}

# Locale identifier -> NLLB language token
NLLB_CODES = {
    "zh-Hans": "zho_Hans",
    "zh-Hant": "zho_Hant",
    "en": "eng_Latn",
    "ja": "jpn_Jpan",
    "ko": "kor_Hang",
    "fr": "fra_Latn",
    "de": "deu_Latn",
    "es": "spa_Latn",
    "ru": "rus_Cyrl",
    "pt": "por_Latn",
    "it": "ita_Latn",
    "ar": "arb_Arab",
    "th": "tha_Thai",
    "vi": "vie_Latn",
}


def is_offline_supported() -> bool:
    """Whether the on-device stack can run in this environment"""
    return AutoModelForSeq2SeqLM is not None and torch is not None


def locale_from_code(code: str) -> str:
    return LOCALES.get(code, code)


def guess_source_locale(target_code: str) -> str:
    """Assume English when translating into Chinese, Chinese otherwise.

    Only covers the Chinese/English pair; any other source language is
    guessed wrong.
    """
    if target_code == "zh":
        return "en"
    return "zh-Hans"


SourcePolicy = Callable[[str], str]


class OfflineTranslator:
    """Local NLLB model shared by all on-device language-pair sessions"""

    def __init__(self, model_name: str = DEFAULT_MODEL, device: Optional[str] = None):
        self.model_name = model_name
        if device is None and torch is not None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = device
        self.model = None
        self.tokenizer = None
        self.last_error: Optional[str] = None
        # Generation is single-flight: the model is not shared across threads
        self._lock = threading.Lock()
        self._sessions: Dict[Tuple[str, str], "OfflineTranslationSession"] = {}

    def session(self, source_locale: str, target_locale: str) -> "OfflineTranslationSession":
        key = (source_locale, target_locale)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = OfflineTranslationSession(self, source_locale, target_locale)
                self._sessions[key] = session
            return session

    def invalidate_sessions(self):
        with self._lock:
            self._sessions.clear()

    def _cached_file(self, filename: str) -> bool:
        try:
            path = try_to_load_from_cache(self.model_name, filename)
        except Exception as e:
            logger.debug(f"Model cache probe failed for {filename}: {e}")
            return False
        return isinstance(path, str)

    def is_model_cached(self) -> bool:
        """Config and weights both present; an interrupted download has only the config"""
        if try_to_load_from_cache is None:
            return False
        if not self._cached_file("config.json"):
            return False
        return any(self._cached_file(name) for name in WEIGHT_FILES)

    def ensure_loaded(self, local_files_only: bool = True) -> bool:
        """Load model/tokenizer; downloads them when local_files_only is False"""
        with self._lock:
            if self.model is not None and self.tokenizer is not None:
                return True
            if not is_offline_supported():
                self.last_error = "transformers/torch are not available"
                return False

            logger.info(f"Loading model {self.model_name} on {self.device}...")
            start_time = time.time()
            try:
                self.tokenizer = AutoTokenizer.from_pretrained(
                    self.model_name, local_files_only=local_files_only)
                self.model = AutoModelForSeq2SeqLM.from_pretrained(
                    self.model_name, local_files_only=local_files_only).to(self.device)
                self.last_error = None
                logger.info(f"Model loaded successfully in {time.time() - start_time:.2f}s")
                return True
            except Exception as e:
                self.model = None
                self.tokenizer = None
                self.last_error = str(e)
                logger.error(f"Error loading model: {e}")
                return False

    def _resolve_forced_bos_token_id(self, tgt_lang_code: str):
        """Resolve the NLLB target language id across tokenizer versions"""
        tok = self.tokenizer

        lang_code_to_id = getattr(tok, "lang_code_to_id", None)
        if isinstance(lang_code_to_id, dict) and tgt_lang_code in lang_code_to_id:
            return int(lang_code_to_id[tgt_lang_code])

        # Newer tokenizers keep language codes as plain vocabulary tokens
        token_id = tok.convert_tokens_to_ids(tgt_lang_code)
        if isinstance(token_id, int) and token_id != getattr(tok, "unk_token_id", None):
            return token_id
        return None

    def generate(self, text: str, src_lang_code: str, tgt_lang_code: str) -> str:
        with self._lock:
            if self.model is None or self.tokenizer is None:
                raise OfflineUnavailableError("Model is not loaded")
            try:
                self.tokenizer.src_lang = src_lang_code
                inputs = self.tokenizer(text, return_tensors="pt").to(self.device)
                forced_bos_token_id = self._resolve_forced_bos_token_id(tgt_lang_code)
                if forced_bos_token_id is None:
                    raise TranslationError(f"Unknown target language token {tgt_lang_code}")
                with torch.no_grad():
                    tokens = self.model.generate(
                        **inputs,
                        forced_bos_token_id=forced_bos_token_id,
                        max_length=256,
                    )
                return self.tokenizer.batch_decode(tokens, skip_special_tokens=True)[0]
            except TranslationError:
                raise
            except Exception as e:
                raise TranslationError(f"Offline translation failed: {e}") from e


class OfflineTranslationSession:
    """On-device translation for one source/target locale pair"""

    def __init__(self, translator: OfflineTranslator, source_locale: str, target_locale: str):
        self.translator = translator
        self.source_locale = source_locale
        self.target_locale = target_locale

    @property
    def language_codes(self) -> Tuple[Optional[str], Optional[str]]:
        return NLLB_CODES.get(self.source_locale), NLLB_CODES.get(self.target_locale)

    def availability(self) -> Availability:
        src, tgt = self.language_codes
        if not src or not tgt or src == tgt or not is_offline_supported():
            return Availability.UNSUPPORTED
        if self.translator.is_model_cached():
            return Availability.INSTALLED
        return Availability.INSTALLABLE

    def prepare(self) -> bool:
        """Load the cached model once before a batch; False if it cannot be used"""
        return self.translator.ensure_loaded()

    def download(self) -> bool:
        logger.info(f"Downloading on-device model for {self.source_locale} -> {self.target_locale}")
        return self.translator.ensure_loaded(local_files_only=False)

    def translate(self, text: str) -> str:
        src, tgt = self.language_codes
        if not src or not tgt:
            raise OfflineUnavailableError(f"Unsupported pair {self.source_locale} -> {self.target_locale}")
        if not self.translator.ensure_loaded():
            raise OfflineUnavailableError(self.translator.last_error or "Model unavailable")
        return self.translator.generate(text, src, tgt)
