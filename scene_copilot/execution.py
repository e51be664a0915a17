"""Execution manager: runs scripts through a ``ScriptEngine`` and keeps history.

At most one script runs at a time.  A second ``execute`` while one is in
flight is rejected straight away with a System-kind result; nothing is
queued.  Every attempt that gets past that check settles in Completed or
Error, lands in the history and is broadcast to completion observers.

The execution timeout is checked after the engine returns.  A script
that overruns is reported as a Timeout failure but is never interrupted.

History is a JSON file::

    {"History": [{"Code": "...", "Timestamp": "2024-05-01T10:00:00",
                  "Success": true, "Summary": "..."}]}

oldest first, rewritten atomically after every change.
"""

import enum
import json
import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .engine import ScriptEngine, UnavailableScriptEngine
from .events import Observers

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 50
DEFAULT_TIMEOUT_SECONDS = 30.0
MIN_TIMEOUT_SECONDS = 1.0
MAX_SUMMARY_LENGTH = 500

BUSY_MESSAGE = "Python execution is already in progress. Please wait for it to complete."
EMPTY_CODE_MESSAGE = "Python code is empty"
CANCELLED_MESSAGE = "Execution cancelled by user"
SUCCESS_SUMMARY = "Script executed successfully"
SYNTAX_ERROR_PREFIX = "SyntaxError: "


class ExecutionState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"
    TIMEOUT = "timeout"


class ErrorKind(str, enum.Enum):
    NONE = "none"
    SYNTAX = "syntax"
    RUNTIME = "runtime"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    SYSTEM = "system"


SUMMARY_PREFIXES = {
    ErrorKind.SYNTAX: "Syntax Error: ",
    ErrorKind.RUNTIME: "Runtime Error: ",
    ErrorKind.TIMEOUT: "Timeout: ",
    ErrorKind.VALIDATION: "Validation Error: ",
    ErrorKind.SYSTEM: "System Error: ",
}


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    stdout_output: str = ""
    error_message: str = ""
    stack_trace: str = ""
    error_line: int = -1
    elapsed_seconds: float = 0.0
    error_kind: ErrorKind = ErrorKind.NONE

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "stdout_output": self.stdout_output,
            "error_message": self.error_message,
            "stack_trace": self.stack_trace,
            "error_line": self.error_line,
            "elapsed_seconds": self.elapsed_seconds,
            "error_kind": self.error_kind.value,
        }


@dataclass
class HistoryEntry:
    code: str
    timestamp: datetime
    succeeded: bool
    summary: str

    def to_json(self) -> dict:
        return {
            "Code": self.code,
            "Timestamp": self.timestamp.isoformat(),
            "Success": self.succeeded,
            "Summary": self.summary,
        }

    @classmethod
    def from_json(cls, data: dict) -> "HistoryEntry":
        return cls(
            code=str(data["Code"]),
            timestamp=datetime.fromisoformat(data["Timestamp"]),
            succeeded=bool(data["Success"]),
            summary=str(data.get("Summary", "")),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error classification
# ═══════════════════════════════════════════════════════════════════════════

# Evaluated in order; the first rule with a matching marker wins.
ERROR_RULES = (
    (("SyntaxError",), ErrorKind.SYNTAX),
    (("TimeoutError", "timed out"), ErrorKind.TIMEOUT),
    (("NameError", "AttributeError", "TypeError", "ValueError", "KeyError",
      "IndexError", "ZeroDivisionError", "RuntimeError"), ErrorKind.RUNTIME),
)

_LINE_RE = re.compile(r"line (\d+)")


def classify_error(error_text: str) -> tuple[ErrorKind, int]:
    """Map raw engine error text to ``(kind, line)``; line is -1 if unknown."""
    for markers, kind in ERROR_RULES:
        if any(marker in error_text for marker in markers):
            line = -1
            if kind == ErrorKind.SYNTAX:
                m = _LINE_RE.search(error_text)
                if m:
                    line = int(m.group(1))
            return kind, line
    return ErrorKind.SYSTEM, -1


def summarize(result: ExecutionResult) -> str:
    if result.success:
        summary = result.stdout_output.strip() or SUCCESS_SUMMARY
    else:
        message = result.error_message
        if result.error_kind == ErrorKind.SYNTAX:
            message = message.removeprefix(SYNTAX_ERROR_PREFIX)
        summary = SUMMARY_PREFIXES.get(result.error_kind, "") + message
    return summary[:MAX_SUMMARY_LENGTH]


# ═══════════════════════════════════════════════════════════════════════════
# Execution Manager
# ═══════════════════════════════════════════════════════════════════════════

class ExecutionManager:

    def __init__(self, engine: ScriptEngine | None = None,
                 history_path: str | Path | None = None,
                 max_history: int = DEFAULT_MAX_HISTORY,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 clock=time.monotonic, now=datetime.now):
        self.engine = engine if engine is not None else UnavailableScriptEngine()
        self.history_path = Path(history_path).expanduser() if history_path else None
        self.max_history = max_history
        self.clock = clock
        self.now = now
        self._timeout = max(MIN_TIMEOUT_SECONDS, float(timeout))

        self.on_state_changed = Observers("execution_state_changed")
        self.on_execution_complete = Observers("execution_complete")

        # Guards state, history, the in-flight flag and the cancel flag.
        self._lock = threading.RLock()
        self._state = ExecutionState.IDLE
        self._in_flight = False
        self._cancelled = False
        self._history: list[HistoryEntry] = []
        self._load_history()

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self) -> ExecutionState:
        with self._lock:
            return self._state

    def is_executing(self) -> bool:
        with self._lock:
            return self._in_flight

    def _set_state_locked(self, new_state: ExecutionState) -> bool:
        if self._state == new_state:
            return False
        logger.debug(f"Execution state {self._state.value} -> {new_state.value}")
        self._state = new_state
        return True

    def _notify_state(self, state: ExecutionState):
        # Called with the lock released so observers may query the manager.
        self.on_state_changed.emit(state)

    @property
    def timeout(self) -> float:
        return self._timeout

    def set_timeout(self, seconds: float):
        self._timeout = max(MIN_TIMEOUT_SECONDS, float(seconds))

    # ── Execution ─────────────────────────────────────────────────────

    def execute(self, code: str) -> ExecutionResult:
        with self._lock:
            if self._in_flight:
                logger.warning("Execution rejected: another script is running")
                return ExecutionResult(success=False, error_message=BUSY_MESSAGE,
                                       error_kind=ErrorKind.SYSTEM)
            self._in_flight = True
            self._cancelled = False
            changed = self._set_state_locked(ExecutionState.VALIDATING)
        if changed:
            self._notify_state(ExecutionState.VALIDATING)

        try:
            result = self._run(code)
            return self._settle(code, result)
        finally:
            with self._lock:
                self._in_flight = False

    def _run(self, code: str) -> ExecutionResult:
        started = self.clock()

        if not code or not code.strip():
            return ExecutionResult(success=False, error_message=EMPTY_CODE_MESSAGE,
                                   error_kind=ErrorKind.VALIDATION)

        if not self._engine_available():
            return ExecutionResult(success=False,
                                   error_message="Python script engine is not available",
                                   error_kind=ErrorKind.SYSTEM)

        ok, message = self._compile_check(code)
        if not ok:
            _, line = classify_error(message)
            return ExecutionResult(success=False, error_message=message, error_line=line,
                                   elapsed_seconds=self.clock() - started,
                                   error_kind=ErrorKind.SYNTAX)

        with self._lock:
            if self._cancelled:
                return ExecutionResult(success=False, error_message=CANCELLED_MESSAGE,
                                       error_kind=ErrorKind.SYSTEM)
            changed = self._set_state_locked(ExecutionState.EXECUTING)
        if changed:
            self._notify_state(ExecutionState.EXECUTING)

        try:
            outcome = self.engine.run(code)
        except Exception as exc:
            logger.exception("Script engine failed")
            return ExecutionResult(success=False, error_message="Script engine failure: %s" % exc,
                                   elapsed_seconds=self.clock() - started,
                                   error_kind=ErrorKind.SYSTEM)
        elapsed = self.clock() - started

        if elapsed > self._timeout:
            return ExecutionResult(
                success=False, stdout_output=outcome.output_text,
                error_message="Python execution timed out after %.2f seconds" % elapsed,
                stack_trace=outcome.stack_trace, error_line=outcome.error_line,
                elapsed_seconds=elapsed, error_kind=ErrorKind.TIMEOUT)

        if outcome.ok:
            return ExecutionResult(success=True, stdout_output=outcome.output_text,
                                   elapsed_seconds=elapsed)

        kind, line = classify_error(outcome.error_text)
        if line < 0:
            line = outcome.error_line
        return ExecutionResult(success=False, stdout_output=outcome.output_text,
                               error_message=outcome.error_text,
                               stack_trace=outcome.stack_trace, error_line=line,
                               elapsed_seconds=elapsed, error_kind=kind)

    def _settle(self, code: str, result: ExecutionResult) -> ExecutionResult:
        final = None
        with self._lock:
            if self._cancelled:
                result = ExecutionResult(success=False, stdout_output=result.stdout_output,
                                         error_message=CANCELLED_MESSAGE,
                                         elapsed_seconds=result.elapsed_seconds,
                                         error_kind=ErrorKind.SYSTEM)
            else:
                final = ExecutionState.COMPLETED if result.success else ExecutionState.ERROR
                if not self._set_state_locked(final):
                    final = None
            self.add_to_history(code, result.success, summarize(result))

        if final is not None:
            self._notify_state(final)
        if result.success:
            logger.info(f"Script executed in {result.elapsed_seconds:.2f}s")
        else:
            logger.warning(f"Script failed ({result.error_kind.value}): {result.error_message}")
        self.on_execution_complete.emit(result)
        return result

    def _engine_available(self) -> bool:
        try:
            return bool(self.engine.is_available())
        except Exception:
            logger.exception("Script engine availability check failed")
            return False

    def _compile_check(self, code: str) -> tuple[bool, str]:
        try:
            return self.engine.compile_check(code)
        except Exception as exc:
            logger.exception("Script engine compile check failed")
            return False, "SyntaxError: %s" % exc

    def validate_syntax(self, code: str) -> tuple[bool, str]:
        """Compile-only check; never runs the code."""
        if not code or not code.strip():
            return False, EMPTY_CODE_MESSAGE
        if not self._engine_available():
            return False, "Python script engine is not available"
        return self._compile_check(code)

    def cancel(self) -> bool:
        """Flag the running script as cancelled and return to Idle.

        The engine call itself keeps running; its result is reported as
        cancelled once it returns.
        """
        with self._lock:
            if self._state != ExecutionState.EXECUTING:
                return False
            self._cancelled = True
            changed = self._set_state_locked(ExecutionState.IDLE)
        if changed:
            self._notify_state(ExecutionState.IDLE)
        logger.info("Execution cancel requested")
        return True

    # ── History ───────────────────────────────────────────────────────

    def add_to_history(self, code: str, succeeded: bool, summary: str):
        with self._lock:
            self._history.append(HistoryEntry(
                code=code, timestamp=self.now(), succeeded=succeeded,
                summary=summary[:MAX_SUMMARY_LENGTH]))
            excess = len(self._history) - max(0, self.max_history)
            if excess > 0:
                del self._history[:excess]
                logger.info(f"Trimmed {excess} oldest history entr{'y' if excess == 1 else 'ies'}")
            self._save_history()

    def clear_history(self):
        with self._lock:
            self._history.clear()
            self._save_history()
        logger.info("Execution history cleared")

    def get_history_entry(self, index: int) -> HistoryEntry | None:
        with self._lock:
            if 0 <= index < len(self._history):
                return self._history[index]
            return None

    def history_count(self) -> int:
        with self._lock:
            return len(self._history)

    def history(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._history)

    def save_history(self):
        with self._lock:
            self._save_history()

    def _save_history(self):
        if self.history_path is None:
            return
        data = {"History": [entry.to_json() for entry in self._history]}
        tmp_path = self.history_path.with_suffix(self.history_path.suffix + ".tmp")
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.history_path)
        except OSError as exc:
            logger.warning(f"Could not save execution history to {self.history_path}: {exc}")

    def _load_history(self):
        if self.history_path is None or not self.history_path.exists():
            return
        try:
            with open(self.history_path, encoding="utf-8") as f:
                data = json.load(f)
            entries = [HistoryEntry.from_json(item) for item in data["History"]]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Ignoring unreadable execution history {self.history_path}: {exc}")
            return
        self._history = entries[max(0, len(entries) - self.max_history):]
        logger.info(f"Loaded {len(self._history)} history entries from {self.history_path}")
