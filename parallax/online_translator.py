import logging

import requests

from .errors import NetworkError, ParseError, RateLimitedError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://translate.googleapis.com/translate_a/single"
DEFAULT_TIMEOUT = 15
USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"


def parse_translation_response(payload) -> str:
    """Join the translated segments of a translate_a/single payload.

    The payload looks like ``[[["Hallo ", "Hello ", ...], ["Welt", "world", ...]], ...]``.
    """
    if not isinstance(payload, list) or not payload or not isinstance(payload[0], list):
        raise ParseError("Unexpected translation payload shape")

    parts = []
    for segment in payload[0]:
        if isinstance(segment, list) and segment and isinstance(segment[0], str):
            parts.append(segment[0])

    result = "".join(parts)
    if not result:
        raise ParseError("Translation payload contained no text")
    return result


class OnlineTranslator:
    """Client for the public translate_a/single endpoint"""

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, timeout: float = DEFAULT_TIMEOUT):
        self.endpoint = endpoint
        self.timeout = timeout

    def translate_text(self, text: str, target_lang: str) -> str:
        """Translate one fragment; raises a TranslationError subclass on failure"""
        params = {
            "client": "gtx",
            "sl": "auto",
            "tl": target_lang,
            "dt": "t",
            "q": text,
        }
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

        try:
            response = requests.get(self.endpoint, params=params, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e

        if response.status_code == 429:
            raise RateLimitedError("HTTP 429")
        if response.status_code != 200:
            raise NetworkError(f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON: {e}") from e

        return parse_translation_response(payload)
