import pytest

from scene_copilot.context import ContextGatherer, PromptContext, WorkflowType
from scene_copilot.prompts import (
    MAX_PROMPT_LENGTH,
    ConversationHistory,
    PromptProcessor,
)


@pytest.fixture
def processor(settings, host, clock):
    settings.system_prompt_template = "SYSTEM"
    return PromptProcessor(settings, ContextGatherer(host, clock=clock))


def test_sanitize_strips_control_characters():
    assert PromptProcessor.sanitize("  a\x00b\x07c\n\td\r  ") == "abc\n\td"


@pytest.mark.parametrize("prompt, fragment", [
    ("", "empty"),
    ("   \n", "empty"),
    ("x" * (MAX_PROMPT_LENGTH + 1), "too long"),
    ("please rm -rf the build folder", "rm -rf"),
    ("Delete every light", "DELETE"),
    ("drop table users", "DROP TABLE"),
])
def test_validate_rejects(prompt, fragment):
    ok, error = PromptProcessor.validate(prompt)
    assert not ok
    assert fragment in error


def test_validate_accepts_normal_prompt():
    assert PromptProcessor.validate("Add a point light above the crate") == (True, "")


def test_build_system_prompt_sections(processor):
    context = PromptContext(
        project_name="Harbor", current_scene_name="Dock_01",
        selected_object_names=["Crate_A"], available_asset_names=["M_Rust"],
        workflow_type=WorkflowType.MATERIAL_CREATION,
    )
    text = processor.build_system_prompt(context)
    assert text.startswith("SYSTEM")
    assert "Current Project: Harbor" in text
    assert "Current Scene: Dock_01" in text
    assert "Currently Selected Objects:\n- Crate_A" in text
    assert "Available Assets:\n- M_Rust" in text
    assert "material creation" in text


def test_large_asset_list_left_out(processor):
    context = PromptContext(available_asset_names=["A%d" % i for i in range(21)])
    assert "Available Assets" not in processor.build_system_prompt(context)


def test_process_appends_request_and_history(processor):
    seen = []
    processor.on_prompt_processed.subscribe(lambda text, ctx: seen.append((text, ctx)))
    processor.add_to_conversation_history("make a cube", "cube()")

    context = processor.gather_current_context()
    text = processor.process("  make it red\x01 ", context)

    assert "User Request: make it red" in text
    assert "\n\nPrevious Conversation:\nPrevious conversation context:\n" in text
    assert "User: make a cube\nAssistant: cube()" in text
    assert seen == [(text, context)]


def test_process_invalid_prompt_returns_message(processor):
    seen = []
    processor.on_prompt_processed.subscribe(lambda *args: seen.append(args))
    text = processor.process("", PromptContext())
    assert text == "Invalid prompt: Prompt cannot be empty"
    assert seen == []


def test_gather_current_context_applies_workflow(processor):
    context = processor.gather_current_context(WorkflowType.VFX)
    assert context.workflow_type == WorkflowType.VFX
    # cached snapshot is not modified
    assert processor.gather_current_context().workflow_type == WorkflowType.GENERAL


def test_conversation_history_is_bounded():
    history = ConversationHistory(max_entries=3, max_text=5)
    for i in range(5):
        history.add("prompt-%d" % i, "response")
    assert len(history) == 3
    assert history.entries()[0] == "User: promp\nAssistant: respo"
    history.clear()
    assert history.format() == ""


@pytest.mark.parametrize("reply, code", [
    ("Here:\n```python\nprint(1)\n```\nDone", "print(1)"),
    ("```Python\nx = 2\n```", "x = 2"),
    ("```python\nunterminated = True\n", "unterminated = True"),
    ("```\nbare()\n```", "bare()"),
    ("```\nbare but open", ""),
    ("  just_code()  \n", "just_code()"),
])
def test_extract_code(reply, code):
    assert PromptProcessor.extract_code(reply) == code
