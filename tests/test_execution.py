import json
import threading
from datetime import datetime

import pytest

from scene_copilot.engine import EngineResult, UnavailableScriptEngine
from scene_copilot.execution import (
    BUSY_MESSAGE,
    ErrorKind,
    ExecutionManager,
    ExecutionState,
    classify_error,
)


@pytest.fixture
def history_path(tmp_path):
    return tmp_path / "history.json"


@pytest.fixture
def manager(engine, history_path, clock):
    return ExecutionManager(engine, history_path=history_path, clock=clock)


def test_successful_execution(manager, engine):
    states, completed = [], []
    manager.on_state_changed.subscribe(states.append)
    manager.on_execution_complete.subscribe(completed.append)
    engine.result = EngineResult(ok=True, output_text="made 3 lights\n")
    engine.duration = 0.5

    result = manager.execute("make_lights(3)")

    assert result.success
    assert result.stdout_output == "made 3 lights\n"
    assert result.error_kind == ErrorKind.NONE
    assert result.elapsed_seconds == pytest.approx(0.5)
    assert states == [ExecutionState.VALIDATING, ExecutionState.EXECUTING,
                      ExecutionState.COMPLETED]
    assert completed == [result]
    assert manager.state == ExecutionState.COMPLETED

    entry = manager.get_history_entry(0)
    assert entry.code == "make_lights(3)"
    assert entry.succeeded
    assert entry.summary == "made 3 lights"


def test_success_without_output_summary(manager):
    manager.execute("pass")
    assert manager.get_history_entry(0).summary == "Script executed successfully"


def test_syntax_error_never_runs(manager, engine):
    engine.compile_result = (False, "SyntaxError: expected ':' (line 4)")
    result = manager.execute("if x\n")
    assert result.error_kind == ErrorKind.SYNTAX
    assert result.error_line == 4
    assert engine.runs == []
    assert manager.state == ExecutionState.ERROR
    assert manager.get_history_entry(0).summary == "Syntax Error: expected ':' (line 4)"


@pytest.mark.parametrize("code", ["", "   \n\t"])
def test_empty_code(manager, engine, code):
    result = manager.execute(code)
    assert not result.success
    assert result.error_kind == ErrorKind.VALIDATION
    assert "empty" in result.error_message
    assert engine.runs == []
    assert manager.state == ExecutionState.ERROR


def test_engine_unavailable(history_path, clock):
    manager = ExecutionManager(UnavailableScriptEngine(), history_path=history_path, clock=clock)
    result = manager.execute("x = 1")
    assert result.error_kind == ErrorKind.SYSTEM
    assert "not available" in result.error_message
    assert manager.validate_syntax("x = 1")[0] is False


def test_runtime_failure(manager, engine):
    engine.result = EngineResult(ok=False, error_text="NameError: name 'lamp' is not defined",
                                 stack_trace="Traceback ...", error_line=2)
    result = manager.execute("x = 1\nlamp.energy = 5")
    assert result.error_kind == ErrorKind.RUNTIME
    assert result.error_line == 2
    assert result.stack_trace == "Traceback ..."
    assert manager.state == ExecutionState.ERROR
    assert not manager.get_history_entry(0).succeeded


def test_overrun_is_reclassified_as_timeout(manager, engine):
    manager.set_timeout(2)
    engine.result = EngineResult(ok=True, output_text="done")
    engine.duration = 2.5
    result = manager.execute("slow()")
    assert not result.success
    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.error_message == "Python execution timed out after 2.50 seconds"
    assert manager.state == ExecutionState.ERROR
    assert engine.runs == ["slow()"]


def test_concurrent_execute_is_rejected(manager, engine):
    inner = []
    engine.on_run = lambda code: inner.append(manager.execute("other()"))
    result = manager.execute("outer()")

    assert result.success
    assert len(inner) == 1
    assert inner[0].error_kind == ErrorKind.SYSTEM
    assert inner[0].error_message == BUSY_MESSAGE
    assert manager.history_count() == 1
    assert engine.runs == ["outer()"]


def test_cancel_while_executing(manager, engine):
    states = []
    manager.on_state_changed.subscribe(states.append)
    engine.on_run = lambda code: states.append(manager.cancel())
    result = manager.execute("long_job()")

    assert not result.success
    assert result.error_kind == ErrorKind.SYSTEM
    assert result.error_message == "Execution cancelled by user"
    assert manager.state == ExecutionState.IDLE
    assert ExecutionState.IDLE in states
    assert True in states
    assert manager.history_count() == 1


def test_cancel_outside_execution_is_noop(manager):
    assert not manager.cancel()
    assert manager.state == ExecutionState.IDLE


def test_validate_syntax(manager, engine):
    assert manager.validate_syntax("")[1] == "Python code is empty"
    assert manager.validate_syntax("x = 1") == (True, "")
    assert engine.runs == []


def test_set_timeout_clamps():
    manager = ExecutionManager()
    manager.set_timeout(0.1)
    assert manager.timeout == 1.0
    manager.set_timeout(45)
    assert manager.timeout == 45.0


def test_history_fifo_eviction(engine, history_path, clock):
    manager = ExecutionManager(engine, history_path=history_path, max_history=3, clock=clock)
    for i in range(4):
        manager.add_to_history("step_%d()" % i, True, "ok")
    assert manager.history_count() == 3
    assert [e.code for e in manager.history()] == ["step_1()", "step_2()", "step_3()"]
    assert manager.get_history_entry(3) is None
    assert manager.get_history_entry(-1) is None


def test_history_persists_and_reloads(manager, engine, history_path, clock):
    manager.add_to_history("a()", True, "x" * 600)
    manager.add_to_history("b()", False, "Runtime Error: boom")

    data = json.loads(history_path.read_text())
    assert list(data) == ["History"]
    assert set(data["History"][0]) == {"Code", "Timestamp", "Success", "Summary"}
    assert len(data["History"][0]["Summary"]) == 500

    reloaded = ExecutionManager(engine, history_path=history_path, clock=clock)
    assert [(e.code, e.succeeded, e.summary) for e in reloaded.history()] == \
        [(e.code, e.succeeded, e.summary) for e in manager.history()]
    assert [e.timestamp for e in reloaded.history()] == \
        [e.timestamp for e in manager.history()]


def test_clear_history_persists(manager, history_path):
    manager.add_to_history("a()", True, "ok")
    manager.clear_history()
    assert manager.history_count() == 0
    assert json.loads(history_path.read_text()) == {"History": []}


@pytest.mark.parametrize("content", ["not json", "[]", '{"History": [{"Code": 1}]}'])
def test_malformed_history_file_is_ignored(engine, history_path, clock, content):
    history_path.write_text(content)
    manager = ExecutionManager(engine, history_path=history_path, clock=clock)
    assert manager.history_count() == 0


def test_timestamps_come_from_injected_now(engine, history_path, clock):
    fixed = datetime(2024, 5, 1, 10, 30, 15, 123456)
    manager = ExecutionManager(engine, history_path=history_path, clock=clock,
                               now=lambda: fixed)
    manager.execute("pass")
    assert manager.get_history_entry(0).timestamp == fixed
    stored = json.loads(history_path.read_text())["History"][0]["Timestamp"]
    assert stored == "2024-05-01T10:30:15.123456"


@pytest.mark.parametrize("text, kind, line", [
    ("SyntaxError: invalid syntax (line 7)", ErrorKind.SYNTAX, 7),
    ("SyntaxError: bad", ErrorKind.SYNTAX, -1),
    ("TimeoutError: took too long", ErrorKind.TIMEOUT, -1),
    ("operation timed out", ErrorKind.TIMEOUT, -1),
    ("AttributeError: 'NoneType' object has no attribute 'x'", ErrorKind.RUNTIME, -1),
    ("KeyError: 'Cube'", ErrorKind.RUNTIME, -1),
    ("MemoryError", ErrorKind.SYSTEM, -1),
])
def test_classify_error(text, kind, line):
    assert classify_error(text) == (kind, line)


def test_state_observer_can_query_manager_from_another_thread(manager):
    seen = []

    def observer(state):
        reader = threading.Thread(target=lambda: seen.append((state, manager.state)))
        reader.start()
        reader.join(timeout=2)

    manager.on_state_changed.subscribe(observer)
    manager.execute("pass")
    assert seen == [(s, s) for s in (ExecutionState.VALIDATING, ExecutionState.EXECUTING,
                                     ExecutionState.COMPLETED)]


def test_zero_max_history_keeps_nothing(engine, history_path, clock):
    ExecutionManager(engine, history_path=history_path, clock=clock).add_to_history(
        "a()", True, "ok")

    manager = ExecutionManager(engine, history_path=history_path, max_history=0, clock=clock)
    assert manager.history_count() == 0
    manager.add_to_history("b()", True, "ok")
    assert manager.history_count() == 0
