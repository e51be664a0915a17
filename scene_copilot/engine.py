"""Script engines: the interpreter capability that runs generated code.

``ExecutionManager`` only talks to the ``ScriptEngine`` interface.  The
in-process ``PythonScriptEngine`` compiles and ``exec``s code into a
fresh namespace seeded with whatever the host wants scripts to see::

    engine = PythonScriptEngine(namespace={"scene": scene_api, "math": math})

``UnavailableScriptEngine`` stands in when no interpreter is wired up;
the manager turns that into a System-kind failure instead of crashing.
"""

import builtins
import contextlib
import io
import logging
import traceback
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "<copilot-script>"
UNAVAILABLE_MESSAGE = "Python script engine is not available"


@dataclass
class EngineResult:
    ok: bool
    output_text: str = ""
    error_text: str = ""
    stack_trace: str = ""
    error_line: int = -1


class ScriptEngine:

    def is_available(self) -> bool:
        raise NotImplementedError

    def compile_check(self, code: str) -> tuple[bool, str]:
        raise NotImplementedError

    def run(self, code: str) -> EngineResult:
        raise NotImplementedError


class UnavailableScriptEngine(ScriptEngine):

    def is_available(self):
        return False

    def compile_check(self, code):
        return False, UNAVAILABLE_MESSAGE

    def run(self, code):
        return EngineResult(ok=False, error_text=UNAVAILABLE_MESSAGE)


class PythonScriptEngine(ScriptEngine):
    """Runs scripts in this interpreter.

    Each run gets its own namespace, so names defined by one script are
    not visible to the next.  stdout and stderr are captured while the
    script runs.
    """

    def __init__(self, namespace: dict | None = None, filename: str = SCRIPT_FILENAME):
        self.namespace = dict(namespace or {})
        self.filename = filename

    def is_available(self):
        return True

    def compile_check(self, code):
        try:
            compile(code, self.filename, "exec")
        except SyntaxError as exc:
            return False, _syntax_message(exc)
        except ValueError as exc:
            # source contains null bytes
            return False, "SyntaxError: %s" % exc
        return True, ""

    def _fresh_namespace(self) -> dict:
        namespace = {"__builtins__": builtins, "__name__": "__copilot__"}
        namespace.update(self.namespace)
        return namespace

    def run(self, code):
        out = io.StringIO()
        err = io.StringIO()
        try:
            compiled = compile(code, self.filename, "exec")
        except (SyntaxError, ValueError) as exc:
            message = _syntax_message(exc) if isinstance(exc, SyntaxError) \
                else "SyntaxError: %s" % exc
            return EngineResult(ok=False, error_text=message,
                                error_line=getattr(exc, "lineno", None) or -1)

        try:
            with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
                exec(compiled, self._fresh_namespace())
        except (Exception, SystemExit) as exc:
            # Skip this frame so the trace starts in the script.
            tb = exc.__traceback__.tb_next if exc.__traceback__ else None
            stack = "".join(traceback.format_exception(type(exc), exc, tb))
            logger.debug(f"Script raised {type(exc).__name__}: {exc}")
            return EngineResult(
                ok=False,
                output_text=out.getvalue() + err.getvalue(),
                error_text="%s: %s" % (type(exc).__name__, exc),
                stack_trace=stack,
                error_line=self._script_line(tb),
            )
        return EngineResult(ok=True, output_text=out.getvalue() + err.getvalue())

    def _script_line(self, tb) -> int:
        line = -1
        for frame, lineno in traceback.walk_tb(tb):
            if frame.f_code.co_filename == self.filename:
                line = lineno
        return line


def _syntax_message(exc: SyntaxError) -> str:
    return "SyntaxError: %s (line %s)" % (exc.msg, exc.lineno)
