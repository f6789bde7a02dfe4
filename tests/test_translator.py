"""Tests for the translation orchestrator: ordering, caching, fallback paths."""

import threading
import time

import pytest

from conftest import FakeOfflineTranslator, FakeOnlineTranslator, block
from parallax.cache import TranslationCache, make_key
from parallax.errors import NetworkError, ParseError, RateLimitedError
from parallax.models import Availability, DownloadDecision, TranslationMode
from parallax.offline_translator import OfflineTranslator
from parallax.translator import TranslationOrchestrator


def _orchestrator(cache, online, offline=None, decision=None, supported=True, **kwargs):
    provider = None
    if decision is not None:
        calls = []

        def provider(src, tgt):
            calls.append((src, tgt))
            return decision
        provider.calls = calls
    return TranslationOrchestrator(cache=cache, online=online, offline=offline,
                                   decision_provider=provider,
                                   offline_supported=lambda: supported, **kwargs)


class TestOnlinePath:

    def test_preserves_order_and_length(self, cache):
        online = FakeOnlineTranslator()
        blocks = [block(0, i * 10, 50, 10, f"line {i}") for i in range(23)]
        result = _orchestrator(cache, online).translate(blocks, "zh")

        assert result.success
        assert result.mode == TranslationMode.ONLINE
        assert len(result.blocks) == len(blocks)
        assert [b.text for b in result.blocks] == [f"[zh] line {i}" for i in range(23)]
        assert [b.rect for b in result.blocks] == [b.rect for b in blocks]

    def test_order_kept_when_completions_are_out_of_order(self, cache):
        class SlowFirst(FakeOnlineTranslator):
            def translate_text(self, text, target_lang):
                if text == "first":
                    time.sleep(0.2)
                return super().translate_text(text, target_lang)

        blocks = [block(0, 0, 10, 10, "first"), block(0, 10, 10, 10, "second"),
                  block(0, 20, 10, 10, "third")]
        result = _orchestrator(cache, SlowFirst()).translate(blocks, "ja")
        assert [b.text for b in result.blocks] == ["[ja] first", "[ja] second", "[ja] third"]

    def test_concurrency_is_bounded(self, cache):
        active = []
        peak = []
        lock = threading.Lock()

        class Counting(FakeOnlineTranslator):
            def translate_text(self, text, target_lang):
                with lock:
                    active.append(text)
                    peak.append(len(active))
                time.sleep(0.05)
                with lock:
                    active.remove(text)
                return text.upper()

        blocks = [block(0, i, 10, 10, f"t{i}") for i in range(15)]
        result = _orchestrator(cache, Counting()).translate(blocks, "en")
        assert result.success
        assert max(peak) <= 5

    def test_whitespace_blocks_short_circuit(self, cache, online):
        blocks = [block(0, 0, 10, 10, "   "), block(0, 10, 10, 10, "")]
        result = _orchestrator(cache, online).translate(blocks, "zh")

        assert [b.text for b in result.blocks] == ["   ", ""]
        assert online.calls == []
        assert len(cache) == 0
        assert result.success

    def test_text_is_trimmed_before_request(self, cache, online):
        _orchestrator(cache, online).translate([block(0, 0, 10, 10, "  Hello \n")], "zh")
        assert online.calls == [("Hello", "zh")]

    def test_cache_hit_skips_network(self, cache):
        online = FakeOnlineTranslator({"Hello": "你好"})
        orchestrator = _orchestrator(cache, online)
        blocks = [block(0, 0, 10, 10, "Hello")]

        first = orchestrator.translate(blocks, "zh")
        second = orchestrator.translate(blocks, "zh")

        assert first.blocks[0].text == second.blocks[0].text == "你好"
        assert online.calls == [("Hello", "zh")]

    def test_prefilled_cache_is_returned_verbatim(self, cache, online):
        cache.put(make_key("Hello", "zh", TranslationMode.ONLINE), "cached")
        result = _orchestrator(cache, online).translate([block(0, 0, 10, 10, "Hello")], "zh")
        assert result.blocks[0].text == "cached"
        assert online.calls == []

    def test_rate_limited_block_falls_back(self, cache):
        # One of three blocks is rate limited
        online = FakeOnlineTranslator(
            translations={"One": "一", "Three": "三"},
            failures={"Two": RateLimitedError("HTTP 429")},
        )
        blocks = [block(0, 0, 10, 10, "One"), block(0, 10, 10, 10, "Two"),
                  block(0, 20, 10, 10, "Three")]
        result = _orchestrator(cache, online).translate(blocks, "zh")

        assert result.success is False
        assert result.cancelled is False
        assert [b.text for b in result.blocks] == ["一", "Two", "三"]
        assert cache.get(make_key("Two", "zh", TranslationMode.ONLINE)) is None

    @pytest.mark.parametrize("error", [NetworkError("down"), ParseError("bad"), RuntimeError("boom")])
    def test_any_block_failure_degrades_without_abort(self, cache, error):
        online = FakeOnlineTranslator(failures={"bad": error})
        blocks = [block(0, 0, 10, 10, "bad"), block(0, 10, 10, 10, "good")]
        result = _orchestrator(cache, online).translate(blocks, "fr")

        assert not result.success
        assert [b.text for b in result.blocks] == ["bad", "[fr] good"]

    def test_empty_batch(self, cache, online):
        result = _orchestrator(cache, online).translate([], "zh")
        assert result.blocks == []
        assert result.success


class TestModeSelection:

    def test_offline_without_platform_support_uses_online(self, cache, online):
        offline = FakeOfflineTranslator()
        blocks = [block(0, 0, 10, 10, "Hello"), block(0, 10, 10, 10, "World")]
        orchestrator = _orchestrator(cache, online, offline, supported=False)

        result = orchestrator.translate(blocks, "zh", TranslationMode.OFFLINE)
        pure_online = _orchestrator(TranslationCache(), FakeOnlineTranslator()).translate(blocks, "zh")

        assert offline.sessions == []
        assert result.mode == TranslationMode.ONLINE
        assert result.success == pure_online.success
        assert result.cancelled == pure_online.cancelled
        assert [b.text for b in result.blocks] == [b.text for b in pure_online.blocks]

    def test_offline_without_backend_uses_online(self, cache, online):
        result = _orchestrator(cache, online).translate([block(0, 0, 1, 1, "Hi")], "zh",
                                                         TranslationMode.OFFLINE)
        assert result.mode == TranslationMode.ONLINE
        assert online.calls == [("Hi", "zh")]

    def test_mode_switch_does_not_share_cache_entries(self, cache, online):
        offline = FakeOfflineTranslator()
        orchestrator = _orchestrator(cache, online, offline)
        blocks = [block(0, 0, 10, 10, "Hello")]

        online_result = orchestrator.translate(blocks, "ja", TranslationMode.ONLINE)
        offline_result = orchestrator.translate(blocks, "ja", TranslationMode.OFFLINE)

        assert online_result.blocks[0].text == "[ja] Hello"
        assert offline_result.blocks[0].text == "<ja>Hello"
        assert offline.calls == ["Hello"]


class TestOfflinePath:

    def test_installed_translates_sequentially(self, cache, online):
        offline = FakeOfflineTranslator()
        blocks = [block(0, 0, 10, 10, "你好"), block(0, 10, 10, 10, " "), block(0, 20, 10, 10, "世界")]
        result = _orchestrator(cache, online, offline).translate(blocks, "en", TranslationMode.OFFLINE)

        assert result.success
        assert result.mode == TranslationMode.OFFLINE
        assert [b.text for b in result.blocks] == ["<en>你好", " ", "<en>世界"]
        assert offline.calls == ["你好", "世界"]
        assert online.calls == []

    def test_source_is_guessed_from_target(self, cache, online):
        offline = FakeOfflineTranslator()
        orchestrator = _orchestrator(cache, online, offline)

        orchestrator.translate([block(0, 0, 1, 1, "Hello")], "zh", TranslationMode.OFFLINE)
        orchestrator.translate([block(0, 0, 1, 1, "你好")], "fr", TranslationMode.OFFLINE)

        assert (offline.sessions[0].source_locale, offline.sessions[0].target_locale) == ("en", "zh-Hans")
        assert (offline.sessions[1].source_locale, offline.sessions[1].target_locale) == ("zh-Hans", "fr")

    def test_source_policy_is_pluggable(self, cache, online):
        offline = FakeOfflineTranslator()
        orchestrator = _orchestrator(cache, online, offline, source_policy=lambda target: "ja")
        orchestrator.translate([block(0, 0, 1, 1, "こんにちは")], "en", TranslationMode.OFFLINE)
        assert offline.sessions[0].source_locale == "ja"

    def test_cache_hit_skips_session(self, cache, online):
        offline = FakeOfflineTranslator()
        cache.put(make_key("Hello", "de", TranslationMode.OFFLINE), "Hallo")
        result = _orchestrator(cache, online, offline).translate([block(0, 0, 1, 1, "Hello")], "de",
                                                                  TranslationMode.OFFLINE)
        assert result.blocks[0].text == "Hallo"
        assert offline.calls == []

    def test_per_block_failure_continues(self, cache, online):
        offline = FakeOfflineTranslator(failing={"broken"})
        blocks = [block(0, 0, 1, 1, "broken"), block(0, 1, 1, 1, "fine")]
        result = _orchestrator(cache, online, offline).translate(blocks, "en", TranslationMode.OFFLINE)

        assert not result.success
        assert not result.cancelled
        assert [b.text for b in result.blocks] == ["broken", "<en>fine"]

    def test_unsupported_pair_falls_back_silently(self, cache, online):
        offline = FakeOfflineTranslator(status=Availability.UNSUPPORTED)
        orchestrator = _orchestrator(cache, online, offline, decision=DownloadDecision.CANCEL)
        result = orchestrator.translate([block(0, 0, 1, 1, "Hello")], "xx", TranslationMode.OFFLINE)

        assert result.mode == TranslationMode.ONLINE
        assert result.blocks[0].text == "[xx] Hello"
        assert orchestrator.decision_provider.calls == []

    def test_installable_cancel_returns_originals(self, cache, online):
        offline = FakeOfflineTranslator(status=Availability.INSTALLABLE)
        blocks = [block(0, 0, 1, 1, "Hello"), block(0, 1, 1, 1, "World")]
        orchestrator = _orchestrator(cache, online, offline, decision=DownloadDecision.CANCEL)
        result = orchestrator.translate(blocks, "zh", TranslationMode.OFFLINE)

        assert result.cancelled
        assert not result.success
        assert result.blocks == blocks
        assert online.calls == []
        assert orchestrator.decision_provider.calls == [("en", "zh-Hans")]

    def test_installable_use_online(self, cache, online):
        offline = FakeOfflineTranslator(status=Availability.INSTALLABLE)
        orchestrator = _orchestrator(cache, online, offline, decision=DownloadDecision.USE_ONLINE)
        result = orchestrator.translate([block(0, 0, 1, 1, "Hello")], "zh", TranslationMode.OFFLINE)

        assert result.mode == TranslationMode.ONLINE
        assert result.success
        assert online.calls == [("Hello", "zh")]

    def test_installable_download_then_translate(self, cache, online):
        offline = FakeOfflineTranslator(status=Availability.INSTALLABLE)
        orchestrator = _orchestrator(cache, online, offline, decision=DownloadDecision.DOWNLOAD)
        result = orchestrator.translate([block(0, 0, 1, 1, "Hello")], "zh", TranslationMode.OFFLINE)

        assert offline.downloads == 1
        assert result.success
        assert result.blocks[0].text == "<zh-Hans>Hello"

    def test_failed_download_is_a_cancel(self, cache, online):
        offline = FakeOfflineTranslator(status=Availability.INSTALLABLE, download_ok=False)
        blocks = [block(0, 0, 1, 1, "Hello")]
        orchestrator = _orchestrator(cache, online, offline, decision=DownloadDecision.DOWNLOAD)
        result = orchestrator.translate(blocks, "zh", TranslationMode.OFFLINE)

        assert result.cancelled
        assert result.blocks == blocks

    def test_invalidate_sessions_is_forwarded(self, cache, online):
        offline = FakeOfflineTranslator()
        _orchestrator(cache, online, offline).invalidate_offline_sessions()
        assert offline.invalidations == 1


class TestUnloadableModel:

    def test_load_failure_falls_back_online(self, cache, online):
        offline = FakeOfflineTranslator(load_ok=False)
        blocks = [block(0, i, 1, 1, f"line {i}") for i in range(4)]
        result = _orchestrator(cache, online, offline).translate(blocks, "zh", TranslationMode.OFFLINE)

        assert offline.loads == 1
        assert offline.calls == []
        assert result.mode == TranslationMode.ONLINE
        assert result.success
        assert [b.text for b in result.blocks] == [f"[zh] line {i}" for i in range(4)]

    def test_load_failure_offers_download_again(self, cache, online):
        offline = FakeOfflineTranslator(load_ok=False)
        orchestrator = _orchestrator(cache, online, offline, decision=DownloadDecision.DOWNLOAD)
        result = orchestrator.translate([block(0, 0, 1, 1, "Hello")], "zh", TranslationMode.OFFLINE)

        assert orchestrator.decision_provider.calls == [("en", "zh-Hans")]
        assert offline.downloads == 1
        assert result.mode == TranslationMode.OFFLINE
        assert result.blocks[0].text == "<zh-Hans>Hello"

    def test_model_lost_mid_batch_stops_offline_calls(self, cache, online):
        offline = FakeOfflineTranslator(unavailable={"two"})
        blocks = [block(0, i, 1, 1, text) for i, text in enumerate(["one", "two", "three", "four"])]
        result = _orchestrator(cache, online, offline).translate(blocks, "en", TranslationMode.OFFLINE)

        assert offline.calls == ["one", "two"]
        assert not result.success
        assert [b.text for b in result.blocks] == ["<en>one", "two", "three", "four"]

    def test_corrupt_cached_model_loads_once(self, cache, online, monkeypatch):
        loads = []

        class BrokenTokenizer:
            @staticmethod
            def from_pretrained(name, local_files_only=True):
                loads.append(local_files_only)
                raise OSError("corrupt model cache")

        monkeypatch.setattr("parallax.offline_translator.is_offline_supported", lambda: True)
        monkeypatch.setattr("parallax.offline_translator.AutoTokenizer", BrokenTokenizer)
        offline = OfflineTranslator(device="cpu")
        monkeypatch.setattr(offline, "is_model_cached", lambda: True)

        blocks = [block(0, i, 1, 1, f"line {i}") for i in range(4)]
        result = _orchestrator(cache, online, offline).translate(blocks, "zh", TranslationMode.OFFLINE)

        assert loads == [True]
        assert result.mode == TranslationMode.ONLINE
        assert len(online.calls) == 4
