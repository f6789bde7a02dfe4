class ParallaxError(Exception):
    """Base error for the screen translation pipeline"""


class CaptureError(ParallaxError):
    """Screen capture failed (missing permission, no display, backend failure)"""


class RecognitionError(ParallaxError):
    """The recognition engine could not process an image"""


class TranslationError(ParallaxError):
    """A single text fragment could not be translated"""


class NetworkError(TranslationError):
    """Transport failure, timeout or a non-200 response"""


class RateLimitedError(NetworkError):
    """HTTP 429 from the translation endpoint"""


class ParseError(TranslationError):
    """Malformed or empty translation payload"""


class OfflineUnavailableError(TranslationError):
    """The on-device backend cannot serve this request"""
