"""
HTTP client for the remote reasoning service (Ollama-compatible /api/generate).

The service resolves utterances the local classifier could not. Two prompt
modes exist:
- "voice": asks for a single JSON object {type, userInput, response, confidence}
- "chat":  asks for a plain Markdown answer

Every failure (timeout, HTTP status, unreachable host, cancellation) is
raised as RemoteServiceFailure; callers decide how to degrade.
"""
import json
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional

from orvion.core.config import Config
from orvion.core.errors import RemoteServiceFailure
from orvion.core.intents import IntentType
from orvion.core.logger import get_logger

PromptMode = str  # "voice" | "chat"

_INTENT_LIST = " | ".join(f'"{t.value}"' for t in IntentType if t is not IntentType.ERROR)

VOICE_PROMPT = """You are a virtual assistant named {assistant} talking with {user}. You are a voice assistant.
{context}
Understand the user's input and reply with ONE JSON object and nothing else:

{{
  "type": {intents},
  "userInput": "<the user's request; for searches, only the search term>",
  "response": "<a short spoken reply, e.g. \\"Sure, playing it now\\">",
  "confidence": <number between 0 and 1>
}}

Rules:
- "general" is for questions you can answer directly; put the answer in "response".
- For payments keep the amount and recipient in "userInput".
- Prefer "wikipedia-query" over "google-search" for people, places and events.
- Use the conversation to resolve pronouns in follow-up questions.

User Input: {text}
"""

CHAT_PROMPT = """You are {assistant}, a friendly assistant talking with {user}.
{context}
Answer in clean Markdown: a short title, a brief explanation, bullet points where useful.
Never output JSON.

User: {text}
"""


def build_prompt(
    text: str,
    assistant_name: str,
    user_name: str,
    context: Optional[Dict[str, Any]] = None,
    mode: PromptMode = "voice",
) -> str:
    """Render the voice or chat prompt with optional conversation context."""
    context_section = ""
    context_string = (context or {}).get("context_string", "")
    if context_string:
        context_section = (
            "\nPrevious conversation:\n"
            f"{context_string}\n"
            "Use this context to understand follow-up questions.\n"
        )
    template = CHAT_PROMPT if mode == "chat" else VOICE_PROMPT
    return template.format(
        assistant=assistant_name,
        user=user_name,
        context=context_section,
        intents=_INTENT_LIST,
        text=text,
    )


class ReasoningClient:
    """Client for the reasoning service, with cooperative cancellation."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        poll_interval: Optional[float] = None,
    ):
        """
        Initialize the reasoning client.

        Args:
            base_url: Service base URL (e.g., http://127.0.0.1:11434)
            model: Model name passed to /api/generate
            timeout: Seconds before a request counts as failed
            api_key: Optional bearer token
            poll_interval: How often a waiting resolve() re-checks cancellation
        """
        self.logger = get_logger()
        self.base_url = (base_url or Config.REASONING_URL).rstrip("/")
        self.model = model or Config.REASONING_MODEL
        self.timeout = Config.REASONING_TIMEOUT_SEC if timeout is None else timeout
        self.api_key = Config.REASONING_API_KEY if api_key is None else api_key
        self.poll_interval = Config.CANCEL_POLL_SEC if poll_interval is None else poll_interval
        self.opener = urllib.request.build_opener(
            urllib.request.HTTPHandler(debuglevel=0),
            urllib.request.HTTPSHandler(debuglevel=0),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Connection": "keep-alive"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def ping(self) -> bool:
        """True if the service answers /api/tags."""
        try:
            req = urllib.request.Request(f"{self.base_url}/api/tags", headers=self._headers(), method="GET")
            with self.opener.open(req, timeout=5) as response:
                json.loads(response.read().decode("utf-8"))
            return True
        except (urllib.error.URLError, OSError, ValueError) as e:
            self.logger.debug(f"[REMOTE] ping failed: {e}")
            return False

    def generate(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        on_open: Optional[Callable[[Any], None]] = None,
    ) -> str:
        """
        Blocking, non-streaming generation.

        on_open, when given, receives the open HTTP response before its body
        is read so another thread can close it.

        Raises:
            RemoteServiceFailure: on HTTP errors, network errors, timeouts or
                an unreadable response body
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": options if options is not None else {
                "temperature": Config.REASONING_TEMPERATURE,
                "num_predict": Config.REASONING_NUM_PREDICT,
            },
        }
        req = urllib.request.Request(
            f"{self.base_url}/api/generate",
            data=json.dumps(payload).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )
        start_time = time.time()
        try:
            with self.opener.open(req, timeout=self.timeout) as response:
                if on_open is not None:
                    on_open(response)
                response_data = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            self.logger.error(f"[REMOTE] HTTP {e.code} after {elapsed_ms}ms")
            raise RemoteServiceFailure(f"reasoning service returned HTTP {e.code}", status=e.code) from e
        except urllib.error.URLError as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            self.logger.error(f"[REMOTE] connection error after {elapsed_ms}ms: {e.reason}")
            raise RemoteServiceFailure(f"cannot reach reasoning service at {self.base_url}") from e
        except (TimeoutError, OSError) as e:
            raise RemoteServiceFailure(f"reasoning service timed out after {self.timeout}s") from e
        except ValueError as e:
            raise RemoteServiceFailure("reasoning service sent an unreadable body") from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        self.logger.debug(
            f"[REMOTE] generation completed in {elapsed_ms}ms "
            f"(eval_tokens={response_data.get('eval_count', 0)})"
        )
        return str(response_data.get("response", "")).strip()

    def resolve(
        self,
        text: str,
        assistant_name: str,
        user_name: str,
        context: Optional[Dict[str, Any]] = None,
        mode: PromptMode = "voice",
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        Resolve an utterance remotely.

        The HTTP call runs on a worker thread; this thread waits on it and
        checks cancel_event every poll_interval seconds.

        Returns:
            The raw reply text (JSON in voice mode, Markdown in chat mode)

        Raises:
            RemoteServiceFailure: on failure, timeout, or cancellation
                (cancelled=True)
        """
        prompt = build_prompt(text, assistant_name, user_name, context, mode)
        return self._run_cancellable(prompt, cancel_event)

    def _run_cancellable(self, prompt: str, cancel_event: Optional[threading.Event]) -> str:
        done = threading.Event()
        outcome: List[Any] = []
        responses: List[Any] = []
        lock = threading.Lock()

        def _abort_open() -> None:
            # Closing the response unblocks the worker's read; a connect still
            # in progress is bounded by self.timeout
            with lock:
                for response in responses:
                    try:
                        response.close()
                    except OSError as e:
                        self.logger.debug(f"[REMOTE] close after cancel failed: {e}")
                responses.clear()

        def _track(response: Any) -> None:
            with lock:
                responses.append(response)
            if cancel_event is not None and cancel_event.is_set():
                _abort_open()

        def _worker() -> None:
            try:
                outcome.append(("ok", self.generate(prompt, on_open=_track)))
            except RemoteServiceFailure as e:
                outcome.append(("error", e))
            except Exception as e:
                outcome.append(("error", RemoteServiceFailure(f"reasoning request failed: {e}")))
            finally:
                done.set()

        if cancel_event is not None and cancel_event.is_set():
            raise RemoteServiceFailure("request cancelled before start", cancelled=True)

        worker = threading.Thread(target=_worker, daemon=True, name="orvion-reasoning")
        worker.start()

        deadline = time.monotonic() + self.timeout + self.poll_interval
        while not done.wait(self.poll_interval):
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info("[REMOTE] request cancelled")
                _abort_open()
                raise RemoteServiceFailure("request cancelled", cancelled=True)
            if time.monotonic() > deadline:
                _abort_open()
                raise RemoteServiceFailure(f"reasoning service timed out after {self.timeout}s")

        status, value = outcome[0]
        if status == "error":
            raise value
        if cancel_event is not None and cancel_event.is_set():
            raise RemoteServiceFailure("request cancelled", cancelled=True)
        return value
