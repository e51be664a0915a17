import math

from scene_copilot.engine import SCRIPT_FILENAME, PythonScriptEngine, UnavailableScriptEngine


def test_runs_code_and_captures_output():
    engine = PythonScriptEngine(namespace={"math": math})
    result = engine.run("print(round(math.pi, 2))")
    assert result.ok
    assert result.output_text == "3.14\n"


def test_each_run_gets_fresh_namespace():
    engine = PythonScriptEngine()
    assert engine.run("leaked = 1").ok
    result = engine.run("print(leaked)")
    assert not result.ok
    assert result.error_text == "NameError: name 'leaked' is not defined"


def test_runtime_error_reports_script_line():
    engine = PythonScriptEngine()
    result = engine.run("x = 1\nprint('before')\ny = x / 0\n")
    assert not result.ok
    assert result.error_text.startswith("ZeroDivisionError")
    assert result.output_text == "before\n"
    assert result.error_line == 3
    assert SCRIPT_FILENAME in result.stack_trace
    assert "engine.py" not in result.stack_trace


def test_compile_check_reports_line():
    ok, message = PythonScriptEngine().compile_check("x = 1\nif x\n    pass\n")
    assert not ok
    assert message.startswith("SyntaxError")
    assert "line 2" in message
    assert PythonScriptEngine().compile_check("x = 1") == (True, "")


def test_system_exit_is_contained():
    result = PythonScriptEngine().run("raise SystemExit(3)")
    assert not result.ok
    assert result.error_text == "SystemExit: 3"


def test_unavailable_engine():
    engine = UnavailableScriptEngine()
    assert not engine.is_available()
    assert not engine.compile_check("x = 1")[0]
    assert not engine.run("x = 1").ok
