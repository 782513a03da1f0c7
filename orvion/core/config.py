"""
Configuration module for Orvion.
Centralizes all settings with environment variable overrides.
"""
import os
from typing import List

from orvion.core.errors import ConfigurationError


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


class Config:
    """Central configuration for Orvion"""

    # Assistant identity (used in the reasoning prompt)
    ASSISTANT_NAME: str = os.environ.get("ORVION_ASSISTANT_NAME", "Orvion")
    DEFAULT_USER_NAME: str = os.environ.get("ORVION_DEFAULT_USER_NAME", "friend")

    # Remote reasoning settings
    REASONING_MODE: str = os.environ.get("ORVION_REASONING_MODE", "ollama")  # "ollama" or "off"
    REASONING_URL: str = os.environ.get("ORVION_REASONING_URL", "http://127.0.0.1:11434")
    REASONING_MODEL: str = os.environ.get("ORVION_REASONING_MODEL", "llama3.1:latest")
    REASONING_API_KEY: str = os.environ.get("ORVION_REASONING_API_KEY", "")
    REASONING_REQUIRE_API_KEY: bool = _env_bool("ORVION_REASONING_REQUIRE_API_KEY", "false")
    REASONING_TIMEOUT_SEC: float = float(os.environ.get("ORVION_REASONING_TIMEOUT_SEC", "12"))
    REASONING_TEMPERATURE: float = float(os.environ.get("ORVION_REASONING_TEMPERATURE", "0.4"))
    REASONING_NUM_PREDICT: int = int(os.environ.get("ORVION_REASONING_NUM_PREDICT", "200"))
    # How often a waiting request re-checks its cancellation handle
    CANCEL_POLL_SEC: float = float(os.environ.get("ORVION_CANCEL_POLL_SEC", "0.05"))

    # Conversation context
    CONTEXT_MESSAGES: int = int(os.environ.get("ORVION_CONTEXT_MESSAGES", "10"))
    CONVERSATION_MAX_MESSAGES: int = int(os.environ.get("ORVION_CONVERSATION_MAX_MESSAGES", "20"))

    # Intent thresholds
    FAST_PATH_MIN_CONFIDENCE: float = float(os.environ.get("ORVION_FAST_PATH_MIN_CONFIDENCE", "0.8"))
    CLARIFY_BELOW_CONFIDENCE: float = float(os.environ.get("ORVION_CLARIFY_BELOW_CONFIDENCE", "0.55"))
    REPEAT_BELOW_CONFIDENCE: float = float(os.environ.get("ORVION_REPEAT_BELOW_CONFIDENCE", "0.3"))
    OFFLINE_MIN_CONFIDENCE: float = float(os.environ.get("ORVION_OFFLINE_MIN_CONFIDENCE", "0.5"))
    ACK_MIN_CONFIDENCE: float = float(os.environ.get("ORVION_ACK_MIN_CONFIDENCE", "0.65"))
    PARTIAL_ACK_MIN_CONFIDENCE: float = float(os.environ.get("ORVION_PARTIAL_ACK_MIN_CONFIDENCE", "0.7"))

    # Dialog state timeouts
    CONFIRMATION_TIMEOUT_SEC: float = float(os.environ.get("ORVION_CONFIRMATION_TIMEOUT_SEC", "30"))
    CONFIRMATION_SWEEP_SEC: float = float(os.environ.get("ORVION_CONFIRMATION_SWEEP_SEC", "10"))
    DISAMBIGUATION_IDLE_SEC: float = float(os.environ.get("ORVION_DISAMBIGUATION_IDLE_SEC", "60"))
    DISAMBIGUATION_SWEEP_SEC: float = float(os.environ.get("ORVION_DISAMBIGUATION_SWEEP_SEC", "30"))
    DISAMBIGUATION_MAX_ATTEMPTS: int = int(os.environ.get("ORVION_DISAMBIGUATION_MAX_ATTEMPTS", "3"))

    # Response cache
    CACHE_MAX_SIZE: int = int(os.environ.get("ORVION_CACHE_MAX_SIZE", "1000"))
    CACHE_TTL_SEC: float = float(os.environ.get("ORVION_CACHE_TTL_SEC", "3600"))
    CACHE_SWEEP_SEC: float = float(os.environ.get("ORVION_CACHE_SWEEP_SEC", "300"))
    CACHE_MIN_QUERY_CHARS: int = int(os.environ.get("ORVION_CACHE_MIN_QUERY_CHARS", "3"))

    # Streaming
    STREAM_BATCH_WORDS: int = max(1, int(os.environ.get("ORVION_STREAM_BATCH_WORDS", "5")))
    STREAM_DELAY_MS: int = int(os.environ.get("ORVION_STREAM_DELAY_MS", "0"))

    # Telemetry
    LATENCY_HISTORY_SIZE: int = int(os.environ.get("ORVION_LATENCY_HISTORY_SIZE", "100"))
    LATENCY_KEEP_SESSIONS: int = int(os.environ.get("ORVION_LATENCY_KEEP_SESSIONS", "50"))
    DIAGNOSTIC_MAX_RECORDS: int = int(os.environ.get("ORVION_DIAGNOSTIC_MAX_RECORDS", "1000"))

    # Logging
    LOG_LEVEL: str = os.environ.get("ORVION_LOG_LEVEL", "INFO")

    # Quiet Mode - hides per-token and sweep chatter
    QUIET_MODE: bool = _env_bool("ORVION_QUIET_MODE", "false")

    # Intents that must go through the safety confirmation gate
    SENSITIVE_INTENTS: List[str] = os.environ.get(
        "ORVION_SENSITIVE_INTENTS",
        "payment-phonepe,payment-googlepay,payment-paytm,payment-upi,"
        "whatsapp-send,telegram-send,instagram-dm,call-contact,"
        "email-send,gmail-send,device-control,smart-routine"
    ).split(",")

    @classmethod
    def remote_enabled(cls) -> bool:
        """True when the remote reasoning service should be consulted."""
        return cls.REASONING_MODE.lower() != "off"

    @classmethod
    def validate(cls) -> None:
        """
        Check startup-time settings.

        Raises:
            ConfigurationError: when the remote reasoning service is enabled but
                its endpoint or a required credential is missing.
        """
        if not cls.remote_enabled():
            return
        if not cls.REASONING_URL.strip():
            raise ConfigurationError("ORVION_REASONING_URL is required when reasoning mode is enabled")
        if cls.REASONING_REQUIRE_API_KEY and not cls.REASONING_API_KEY.strip():
            raise ConfigurationError("ORVION_REASONING_API_KEY is required by this deployment")
