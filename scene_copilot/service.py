"""Service container owning one execution manager and one orchestrator.

Create it once per process (or plug-in session) and hand it to whatever
needs it: the CLI, the bridge server, a host panel::

    service = CopilotService.create()
    result = service.execution.execute("print('hi')")
    service.shutdown()
"""

import logging
import threading
import time
from pathlib import Path

from .context import ContextGatherer, HostContext, WorkflowType
from .dispatch import call_inline
from .engine import PythonScriptEngine, ScriptEngine
from .execution import ExecutionManager
from .llm import GenerationResult, LLMOrchestrator
from .models import select_profile
from .prompts import PromptProcessor
from .safety import CodeSafetyValidator
from .settings import CopilotSettings, load_settings, resolve_settings_path, save_settings
from .transport import HttpTransport, RequestsTransport
from .usage import UsageTracker

logger = logging.getLogger(__name__)

# Extra wait on top of the request timeout before giving up on a callback.
WAIT_MARGIN_SECONDS = 5.0


class CopilotService:

    def __init__(self, settings: CopilotSettings, settings_path: str | Path | None = None,
                 engine: ScriptEngine | None = None, host: HostContext | None = None,
                 transport: HttpTransport | None = None, dispatch=call_inline,
                 clock=time.monotonic):
        self.settings = settings
        self.settings_path = resolve_settings_path(settings_path)
        self.transport = transport if transport is not None else RequestsTransport()

        self.gatherer = ContextGatherer(host, clock=clock)
        self.processor = PromptProcessor(settings, self.gatherer)
        self.safety = CodeSafetyValidator(settings)
        self.usage = UsageTracker(clock=clock)

        self.execution = ExecutionManager(
            engine if engine is not None else PythonScriptEngine(),
            history_path=settings.history_path,
            timeout=settings.execution_timeout_seconds,
            clock=clock,
        )
        self.llm = LLMOrchestrator(
            settings,
            processor=self.processor,
            safety=self.safety,
            transport=self.transport,
            usage=self.usage,
            dispatch=dispatch,
            clock=clock,
            persist=self.save_settings,
        )

    @classmethod
    def create(cls, settings_path: str | Path | None = None, **kwargs) -> "CopilotService":
        """Load settings from disk and build the service."""
        settings = load_settings(settings_path)
        return cls(settings, settings_path=settings_path, **kwargs)

    def save_settings(self, settings: CopilotSettings | None = None) -> Path:
        return save_settings(settings or self.settings, self.settings_path)

    def effective_request_timeout(self) -> float:
        profile = select_profile(self.settings.model)
        return profile.effective_timeout(self.settings.request_timeout_seconds)

    def generate_and_wait(self, prompt: str, workflow: WorkflowType | None = None,
                          timeout: float | None = None) -> GenerationResult:
        """Run one generation and block until it resolves.

        Only call this off the host's main thread when completions are
        dispatched through a main-thread queue, otherwise it cannot finish.
        """
        done = threading.Event()
        holder = []

        def on_complete(result):
            holder.append(result)
            done.set()

        self.llm.generate(prompt, on_complete, workflow=workflow)
        wait = timeout if timeout is not None else \
            self.effective_request_timeout() + WAIT_MARGIN_SECONDS
        if not done.wait(wait):
            logger.warning(f"No generation result after {wait:.0f}s, cancelling")
            self.llm.cancel_generation()
            done.wait(1.0)
        if holder:
            return holder[0]
        return GenerationResult(success=False, error_message="Generation did not complete")

    def shutdown(self):
        self.llm.cancel_generation()
        self.execution.save_history()
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()
        logger.info("Copilot service shut down")
