import json
from types import SimpleNamespace

import pytest

from scene_copilot.context import StaticHostContext
from scene_copilot.engine import EngineResult, PythonScriptEngine, ScriptEngine
from scene_copilot.service import CopilotService
from scene_copilot.settings import CopilotSettings
from scene_copilot.transport import HttpTransport, RequestHandle, TransportResponse

VALID_KEY = "sk-test-" + "x" * 32


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedEngine(ScriptEngine):
    """Engine whose answers are set by the test."""

    def __init__(self, clock=None):
        self.available = True
        self.compile_result = (True, "")
        self.result = EngineResult(ok=True, output_text="")
        self.duration = 0.0
        self.on_run = None
        self.clock = clock
        self.runs = []

    def is_available(self):
        return self.available

    def compile_check(self, code):
        return self.compile_result

    def run(self, code):
        self.runs.append(code)
        if self.on_run is not None:
            self.on_run(code)
        if self.clock is not None:
            self.clock.advance(self.duration)
        return self.result


class RecordingTransport(HttpTransport):
    """Records posts; the test decides when and how each one completes."""

    def __init__(self):
        self.requests = []

    def post(self, url, headers, body, timeout, on_complete):
        handle = RequestHandle()
        self.requests.append(SimpleNamespace(
            url=url, headers=headers, payload=json.loads(body), timeout=timeout,
            on_complete=on_complete, handle=handle))
        return handle

    @property
    def last(self):
        return self.requests[-1]

    def respond(self, response: TransportResponse, index: int = -1):
        request = self.requests[index]
        if not request.handle.cancelled:
            request.on_complete(response)
        request.handle._finish()

    def reply_json(self, data, status: int = 200, index: int = -1):
        self.respond(TransportResponse(ok=True, status=status, body=json.dumps(data)), index)

    def fail(self, error: str = "connection reset", index: int = -1):
        self.respond(TransportResponse(ok=False, error=error), index)


def chat_reply(text: str, total_tokens: int = 42) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"total_tokens": total_tokens},
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return ScriptedEngine(clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def host():
    return StaticHostContext(
        project="Harbor", scene="Dock_01",
        selection=["Crate_A", "Crane"],
        assets=["M_Rust", "SM_Crate", "SM_Crate", "T_Water"],
    )


@pytest.fixture
def settings(tmp_path):
    return CopilotSettings(
        api_key=VALID_KEY,
        model="gpt-4o",
        history_path=str(tmp_path / "history.json"),
    )


class CannedTransport(HttpTransport):
    """Real worker-thread transport that answers from a fixed reply."""

    def __init__(self, reply: TransportResponse):
        self.reply = reply
        self.calls = []

    def _perform(self, url, headers, body, timeout):
        self.calls.append((url, json.loads(body), timeout))
        return self.reply


@pytest.fixture
def make_service(settings, tmp_path):
    def factory(reply_text=None, transport=None, **kwargs):
        if transport is None:
            body = json.dumps(chat_reply(reply_text or "```python\nprint('hi')\n```"))
            transport = CannedTransport(TransportResponse(ok=True, status=200, body=body))
        kwargs.setdefault("engine", PythonScriptEngine())
        return CopilotService(settings, settings_path=tmp_path / "settings.yaml",
                              transport=transport, **kwargs)
    return factory
