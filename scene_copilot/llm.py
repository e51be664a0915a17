"""LLM request orchestrator: prompt -> model request -> checked script.

One generation may be in flight at a time.  ``generate`` never blocks on
the network: the request runs on a transport worker and its completion
is dispatched (inline by default, or onto the host's main thread through
``MainThreadQueue.post``) back into the orchestrator.

Every call to ``generate`` resolves its ``on_complete`` callback exactly
once, synchronously for rejected requests.  Late responses for a
cancelled request are dropped by comparing request sequence numbers, the
same way the chat engine discards results from a cleared session.
"""

import enum
import json
import logging
import threading
import time
from dataclasses import dataclass

from .context import WorkflowType
from .dispatch import call_inline
from .events import Observers
from .models import ModelProfile, select_profile
from .prompts import PromptProcessor
from .safety import CodeSafetyValidator
from .settings import CopilotSettings, LLMProvider
from .transport import HttpTransport, RequestsTransport, TransportResponse
from .usage import UsageTracker

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = (LLMProvider.OPENAI,)
LIKELY_TIMEOUT_RATIO = 0.9
API_LOG_LIMIT = 500
ERROR_BODY_LIMIT = 500


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    ERROR = "error"


BUSY_STATES = (GenerationState.PROCESSING, GenerationState.VALIDATING)


@dataclass
class GenerationResult:
    success: bool = False
    generated_code: str = ""
    error_message: str = ""
    raw_response_text: str = ""
    elapsed_seconds: float = 0.0
    tokens_used: int = 0
    http_status: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "generated_code": self.generated_code,
            "error_message": self.error_message,
            "raw_response_text": self.raw_response_text,
            "elapsed_seconds": self.elapsed_seconds,
            "tokens_used": self.tokens_used,
            "http_status": self.http_status,
        }


def _failure(message: str, **kwargs) -> GenerationResult:
    return GenerationResult(success=False, error_message=message, **kwargs)


class LLMOrchestrator:

    def __init__(self, settings: CopilotSettings,
                 processor: PromptProcessor | None = None,
                 safety: CodeSafetyValidator | None = None,
                 transport: HttpTransport | None = None,
                 usage: UsageTracker | None = None,
                 dispatch=call_inline,
                 clock=time.monotonic,
                 persist=None):
        self.settings = settings
        self.processor = processor or PromptProcessor(settings)
        self.safety = safety or CodeSafetyValidator(settings)
        self.transport = transport if transport is not None else RequestsTransport()
        self.usage = usage or UsageTracker(clock=clock)
        self.dispatch = dispatch
        self.clock = clock
        self.persist = persist

        self.on_generation_complete = Observers("generation_complete")
        self.on_state_changed = Observers("generation_state_changed")

        self._lock = threading.Lock()
        self._state = GenerationState.IDLE
        self._sequence = 0
        self._pending: dict[int, object] = {}
        self._handle = None

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self) -> GenerationState:
        with self._lock:
            return self._state

    def is_busy(self) -> bool:
        return self.state in BUSY_STATES

    def _set_state_locked(self, new_state: GenerationState) -> bool:
        if self._state == new_state:
            return False
        logger.debug(f"Generation state {self._state.value} -> {new_state.value}")
        self._state = new_state
        return True

    def _notify_state(self, state: GenerationState):
        self.on_state_changed.emit(state)

    # ── Configuration ─────────────────────────────────────────────────

    def is_configured_for_provider(self, provider: LLMProvider) -> bool:
        if provider == LLMProvider.OPENAI:
            return bool(self.settings.get_api_key())
        return False

    def set_api_key(self, key: str):
        self.settings.set_api_key(key)
        if self.persist is not None:
            self.persist(self.settings)
        logger.info("API key updated")

    def get_usage_statistics(self) -> tuple[int, int]:
        return self.usage.statistics()

    def clear_usage_statistics(self):
        self.usage.reset()
        logger.info("Usage statistics cleared")

    # ── Generation ────────────────────────────────────────────────────

    def generate(self, prompt: str, on_complete=None,
                 workflow: WorkflowType | None = None) -> bool:
        """Start a generation.  Returns True when the request was sent.

        Rejections (busy, bad settings, rate limit, bad prompt,
        unsupported provider) call *on_complete* before returning False.
        """
        with self._lock:
            rejection = self._check_request_locked(prompt)
            if rejection:
                logger.warning(f"Generation rejected: {rejection}")
            else:
                self._sequence += 1
                seq = self._sequence
                self._pending[seq] = on_complete
                changed = self._set_state_locked(GenerationState.PROCESSING)

        if rejection:
            self._invoke(on_complete, _failure(rejection))
            return False

        if changed:
            self._notify_state(GenerationState.PROCESSING)
        return self._send(seq, prompt, workflow)

    def _check_request_locked(self, prompt: str) -> str:
        if self._state in BUSY_STATES:
            return "Another code generation request is already in progress"

        ok, error = self.settings.validate()
        if not ok:
            return "Settings validation failed: %s" % error

        if not self.usage.can_make_request(self.settings.max_requests_per_minute):
            return "Rate limit exceeded. Please wait before making another request."

        # Checked as it will be sent, after control characters are dropped.
        ok, error = self.processor.validate(self.processor.sanitize(prompt))
        if not ok:
            return "Prompt validation failed: %s" % error

        if self.settings.provider not in SUPPORTED_PROVIDERS:
            return "Selected LLM provider is not yet supported"
        return ""

    def _send(self, seq: int, prompt: str, workflow: WorkflowType | None) -> bool:
        started = self.clock()
        try:
            context = self.processor.gather_current_context(workflow)
            processed = self.processor.process(prompt, context)
            profile = select_profile(self.settings.model)
            payload = profile.build_payload(
                self.settings, self.settings.system_prompt_template, processed)
            url = profile.endpoint_for(self.settings)
            timeout = profile.effective_timeout(self.settings.request_timeout_seconds)
            headers = {
                "Content-Type": "application/json",
                "Authorization": "Bearer %s" % self.settings.get_api_key(),
            }
            body = json.dumps(payload)

            self.usage.update_usage()
            if self.settings.enable_api_logging:
                logger.info(f"API request → {url} (timeout {timeout:.0f}s): "
                            f"{body[:API_LOG_LIMIT]}")

            def on_response(response: TransportResponse):
                self.dispatch(lambda: self._handle_response(
                    seq, prompt, profile, timeout, started, response))

            handle = self.transport.post(url, headers, body, timeout, on_response)
        except Exception as exc:
            logger.exception("Could not start generation request")
            self._finish(seq, _failure("Failed to send request: %s" % exc,
                                       elapsed_seconds=self.clock() - started))
            return False

        with self._lock:
            cancelled = seq != self._sequence
            if not cancelled and seq in self._pending:
                self._handle = handle
        if cancelled:
            handle.cancel()
        return True

    def _handle_response(self, seq: int, prompt: str, profile: ModelProfile,
                         timeout: float, started: float, response: TransportResponse):
        with self._lock:
            if seq != self._sequence or seq not in self._pending:
                logger.debug(f"Discarding response for stale request #{seq}")
                return
            self._handle = None

        elapsed = self.clock() - started
        if self.settings.enable_api_logging:
            logger.info(f"API response ← status {response.status} in {elapsed:.2f}s: "
                        f"{response.body[:API_LOG_LIMIT]}")

        if not response.ok:
            if elapsed >= timeout * LIKELY_TIMEOUT_RATIO:
                message = ("HTTP request failed after %.1f seconds (likely timed out, "
                           "timeout is %.0f seconds)" % (elapsed, timeout))
            else:
                message = "HTTP request failed or timed out"
            if response.error:
                message += ": %s" % response.error
            self._finish(seq, _failure(message, elapsed_seconds=elapsed))
            return

        if response.status != 200:
            self._finish(seq, _failure(
                "HTTP Error %d: %s" % (response.status, response.body[:ERROR_BODY_LIMIT]),
                raw_response_text=response.body, elapsed_seconds=elapsed,
                http_status=response.status))
            return

        parsed = profile.parse_response(response.body)
        common = dict(raw_response_text=response.body, elapsed_seconds=elapsed,
                      tokens_used=parsed.tokens_used, http_status=response.status)
        if not parsed.ok:
            self._finish(seq, _failure(parsed.error, **common))
            return

        code = self.processor.extract_code(parsed.text)
        if not code:
            self._finish(seq, _failure("No Python code found in LLM response", **common))
            return

        with self._lock:
            if seq != self._sequence:
                return
            changed = self._set_state_locked(GenerationState.VALIDATING)
        if changed:
            self._notify_state(GenerationState.VALIDATING)

        ok, error = self.safety.validate(code)
        if not ok:
            self._finish(seq, _failure("Code validation failed: %s" % error,
                                       generated_code=code, **common))
            return

        self.processor.add_to_conversation_history(prompt, code)
        self._finish(seq, GenerationResult(success=True, generated_code=code, **common))

    def _finish(self, seq: int, result: GenerationResult):
        final = GenerationState.COMPLETED if result.success else GenerationState.ERROR
        with self._lock:
            if seq != self._sequence or seq not in self._pending:
                logger.debug(f"Dropping result for stale request #{seq}")
                return
            callback = self._pending.pop(seq)
            self._handle = None
            changed = self._set_state_locked(final)

        if result.success:
            logger.info(f"Generation completed in {result.elapsed_seconds:.2f}s "
                        f"({result.tokens_used} tokens)")
        else:
            logger.warning(f"Generation failed: {result.error_message}")
        if changed:
            self._notify_state(final)
        self._invoke(callback, result)
        self.on_generation_complete.emit(result)

    def cancel_generation(self) -> bool:
        """Abort the in-flight request and resolve pending callbacks."""
        with self._lock:
            handle, self._handle = self._handle, None
            pending = list(self._pending.values())
            self._pending.clear()
            self._sequence += 1
            changed = self._set_state_locked(GenerationState.IDLE)

        if handle is not None:
            handle.cancel()
        if changed:
            self._notify_state(GenerationState.IDLE)
        for callback in pending:
            self._invoke(callback, _failure("Generation cancelled by user"))
        if pending:
            logger.info("Generation cancelled by user")
        return bool(pending)

    @staticmethod
    def _invoke(callback, result: GenerationResult):
        if callback is None:
            return
        try:
            callback(result)
        except Exception:
            logger.exception("Generation completion callback raised")
