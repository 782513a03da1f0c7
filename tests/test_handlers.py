"""
Tests for action handlers, acknowledgments and voice metadata.

Run with: python -m pytest tests/test_handlers.py -v
"""

import random
from datetime import datetime

import pytest

from orvion.brain.acknowledgments import DEFAULT_PHRASES, PHRASES, Acknowledger
from orvion.brain.voice_metadata import detect_language, voice_metadata
from orvion.core.handlers import HANDLER_NAMES, ActionDispatcher, ActionResult
from orvion.core.intents import IntentResult, IntentType, Provenance


@pytest.fixture
def actions():
    return ActionDispatcher(clock=lambda: datetime(2024, 3, 15, 9, 30))


def intent(intent_type, response="", slots=None, text="x", confidence=0.9):
    return IntentResult(intent_type, confidence, text, Provenance.FAST, response=response, slots=slots or {})


class TestHandlerTable:
    def test_every_intent_has_a_handler(self):
        assert set(HANDLER_NAMES) == set(IntentType)

    @pytest.mark.parametrize("intent_type", list(IntentType))
    def test_dispatch_never_raises(self, actions, intent_type):
        result = actions.dispatch(intent(intent_type))
        assert isinstance(result, ActionResult)
        assert result.intent_type == intent_type

    def test_broken_handler_falls_back_to_general(self, actions, monkeypatch):
        def broken(_intent):
            raise KeyError("oops")

        monkeypatch.setitem(actions._table, IntentType.WEATHER_SHOW, broken)
        result = actions.dispatch(intent(IntentType.WEATHER_SHOW, response="Checking"))
        assert result.action == "speak"
        assert result.response == "Checking"


class TestHandlers:
    def test_general_speaks_response(self, actions):
        result = actions.dispatch(intent(IntentType.GENERAL, response="Paris."))
        assert (result.action, result.response) == ("speak", "Paris.")

    def test_general_without_response(self, actions):
        assert actions.dispatch(intent(IntentType.GENERAL)).response == "Done."

    def test_time_uses_clock(self, actions):
        assert actions.dispatch(intent(IntentType.GET_TIME)).response == "The current time is 09:30 AM"

    def test_google_search_url(self, actions):
        result = actions.dispatch(intent(IntentType.GOOGLE_SEARCH, slots={"query": "python tips"}))
        assert result.action == "open-url"
        assert result.url == "https://www.google.com/search?q=python+tips"
        assert result.metadata["searchEngine"] == "google"

    def test_youtube_play(self, actions):
        result = actions.dispatch(intent(IntentType.YOUTUBE_PLAY, slots={"query": "lofi beats"}))
        assert result.url.endswith("search_query=lofi+beats")
        assert result.metadata["type"] == "play"

    def test_payment_action(self, actions):
        result = actions.dispatch(intent(
            IntentType.PAYMENT_PHONEPE,
            response="Opening PhonePe to pay 500 rupees",
            slots={"amount": "500", "app": "PhonePe"},
        ))
        assert result.action == "phonepe-payment"
        assert dict(result.metadata) == {"amount": "500", "app": "PhonePe"}

    def test_app_launch(self, actions):
        result = actions.dispatch(intent(IntentType.APP_LAUNCH, slots={"app_name": "spotify"}))
        assert result.action == "app-launch"
        assert result.response == "Opening spotify"

    def test_client_action_name_mapping(self, actions):
        assert actions.dispatch(intent(IntentType.CALL_CONTACT)).action == "make-call"
        assert actions.dispatch(intent(IntentType.SET_ALARM)).action == "set-alarm"

    def test_device(self, actions):
        result = actions.dispatch(intent(IntentType.DEVICE_CONTROL, slots={"action": "turn off", "device": "fan"}))
        assert result.action == "control-device"
        assert result.response == "Okay, I'll turn off the fan."

    def test_to_event(self, actions):
        event = actions.dispatch(intent(IntentType.INSTAGRAM_OPEN)).to_event()
        assert event == {"action": "open-url", "intent": "instagram-open", "url": "https://www.instagram.com/"}

    def test_metadata_read_only(self, actions):
        result = actions.dispatch(intent(IntentType.APP_LAUNCH, slots={"app_name": "spotify"}))
        with pytest.raises(TypeError):
            result.metadata["app_name"] = "other"


class TestAcknowledgments:
    def test_known_intent_phrase(self):
        ack = Acknowledger(rng=random.Random(1)).acknowledge(IntentType.GOOGLE_SEARCH, 0.9)
        assert ack.text in PHRASES[IntentType.GOOGLE_SEARCH]
        assert ack.to_dict()["intentType"] == "google-search"

    def test_default_phrase(self):
        ack = Acknowledger().acknowledge(IntentType.SCREEN_SHARE, 0.9)
        assert ack.text in DEFAULT_PHRASES

    def test_below_threshold(self):
        assert Acknowledger().acknowledge(IntentType.GOOGLE_SEARCH, 0.6) is None
        assert Acknowledger().acknowledge(IntentType.GOOGLE_SEARCH, 0.65) is not None

    def test_partial_needs_higher_bar(self):
        acker = Acknowledger()
        assert acker.acknowledge_partial(intent(IntentType.PLAY_MUSIC, confidence=0.68)) is None
        assert acker.acknowledge_partial(intent(IntentType.PLAY_MUSIC, confidence=0.85)) is not None
        assert acker.acknowledge_partial(None) is None


class TestVoiceMetadata:
    def test_language_detection(self):
        assert detect_language("what's the time") == "en"
        assert detect_language("समय क्या है") == "hi"
        assert detect_language("वेळ काय आहे") == "mr"
        assert detect_language("") == "en"

    def test_error_tone(self):
        meta = voice_metadata(IntentType.ERROR, "hello")
        assert meta["emotion"] == "apologetic"
        assert meta["language"] == "en"

    def test_search_tone(self):
        assert voice_metadata(IntentType.GOOGLE_SEARCH, "x")["tone"] == "professional"
        assert voice_metadata(IntentType.WIKIPEDIA_QUERY, "x")["emotion"] == "informative"

    def test_profiles_not_mutated(self):
        voice_metadata(IntentType.ERROR, "hello")
        assert voice_metadata(IntentType.GENERAL, "hello")["emotion"] == "soft_warm"
