"""Prompt processing: sanitize, validate, enrich and extract code.

The processor turns raw user text into the prompt sent to the model
(system template + scene context + request + earlier turns) and pulls
the generated script back out of the model's reply.
"""

import logging
import re
from dataclasses import replace

from .context import ContextGatherer, PromptContext, WorkflowType
from .events import Observers
from .settings import CopilotSettings

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 2000
MAX_CONVERSATION_ENTRIES = 10
MAX_CONVERSATION_TEXT = 500

PROHIBITED_PATTERNS = (
    "DELETE",
    "DROP TABLE",
    "TRUNCATE",
    "format C:",
    "rm -rf",
    "del /f",
)

WORKFLOW_GUIDANCE = {
    WorkflowType.GENERAL: "",
    WorkflowType.MATERIAL_CREATION: (
        "\n\nFocus on material creation workflows: shader node trees, "
        "material parameters and assigning materials to objects."),
    WorkflowType.LEVEL_EDITING: (
        "\n\nFocus on scene editing operations: placing, transforming and "
        "organizing objects in the active scene."),
    WorkflowType.ASSET_MANAGEMENT: (
        "\n\nFocus on asset management: listing, renaming, moving and "
        "tagging assets in the project library."),
    WorkflowType.ANIMATION: (
        "\n\nFocus on animation workflows including rigs, keyframes, "
        "actions and sequences."),
    WorkflowType.VFX: (
        "\n\nFocus on visual effects including particle systems, "
        "simulations and emissive material effects."),
}

CODE_FENCE = "```"
CODE_LANGUAGE_TAG = "python"


# ═══════════════════════════════════════════════════════════════════════════
# Conversation History
# ═══════════════════════════════════════════════════════════════════════════

class ConversationHistory:
    """Recent user/assistant turns, used only to enrich later prompts."""

    def __init__(self, max_entries: int = MAX_CONVERSATION_ENTRIES,
                 max_text: int = MAX_CONVERSATION_TEXT):
        self.max_entries = max_entries
        self.max_text = max_text
        self._entries: list[str] = []

    def add(self, user_prompt: str, response: str):
        self._entries.append("User: %s\nAssistant: %s" % (
            user_prompt[:self.max_text], response[:self.max_text]))
        while len(self._entries) > self.max_entries:
            self._entries.pop(0)

    def clear(self):
        self._entries.clear()

    def entries(self) -> list[str]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)

    def format(self) -> str:
        if not self._entries:
            return ""
        return "Previous conversation context:\n" + "\n".join(self._entries)


# ═══════════════════════════════════════════════════════════════════════════
# Prompt Processor
# ═══════════════════════════════════════════════════════════════════════════

class PromptProcessor:

    def __init__(self, settings: CopilotSettings, gatherer: ContextGatherer | None = None,
                 conversation: ConversationHistory | None = None):
        self.settings = settings
        self.gatherer = gatherer or ContextGatherer()
        self.conversation = conversation or ConversationHistory()
        self.on_prompt_processed = Observers("prompt_processed")

    # ── Input checks ──────────────────────────────────────────────────

    @staticmethod
    def sanitize(text: str) -> str:
        """Drop control characters (keeping newline, CR, tab) and trim."""
        cleaned = "".join(ch for ch in text if ord(ch) >= 32 or ch in "\n\r\t")
        return cleaned.strip()

    @staticmethod
    def validate(prompt: str) -> tuple[bool, str]:
        if not prompt or not prompt.strip():
            return False, "Prompt cannot be empty"
        if len(prompt) > MAX_PROMPT_LENGTH:
            return False, f"Prompt is too long (max {MAX_PROMPT_LENGTH} characters)"
        upper = prompt.upper()
        for pattern in PROHIBITED_PATTERNS:
            if pattern.upper() in upper:
                return False, f"Prompt contains prohibited pattern: {pattern}"
        return True, ""

    # ── Prompt assembly ───────────────────────────────────────────────

    def gather_current_context(self, workflow: WorkflowType | None = None) -> PromptContext:
        context = self.gatherer.gather()
        if workflow is not None and workflow != context.workflow_type:
            context = replace(context, workflow_type=workflow)
        return context

    def build_system_prompt(self, context: PromptContext) -> str:
        parts = [self.settings.system_prompt_template]

        if context.project_name:
            parts.append("\n\nCurrent Project: %s" % context.project_name)
        if context.current_scene_name:
            parts.append("\nCurrent Scene: %s" % context.current_scene_name)

        if context.selected_object_names:
            parts.append("\n\nCurrently Selected Objects:")
            parts.extend("\n- %s" % name for name in context.selected_object_names)

        # Large asset lists are left out to keep the prompt small.
        assets = context.available_asset_names
        if assets and len(assets) <= 20:
            parts.append("\n\nAvailable Assets:")
            parts.extend("\n- %s" % name for name in assets)

        parts.append(WORKFLOW_GUIDANCE.get(context.workflow_type, ""))
        return "".join(parts)

    def process(self, user_prompt: str, context: PromptContext) -> str:
        sanitized = self.sanitize(user_prompt)
        ok, error = self.validate(sanitized)
        if not ok:
            return "Invalid prompt: %s" % error

        processed = self.build_system_prompt(context)
        processed += "\n\nUser Request: " + sanitized

        history = self.conversation.format()
        if history:
            processed += "\n\nPrevious Conversation:\n" + history

        self.on_prompt_processed.emit(processed, context)
        return processed

    # ── Conversation ──────────────────────────────────────────────────

    def add_to_conversation_history(self, user_prompt: str, response: str):
        self.conversation.add(user_prompt, response)

    def clear_conversation_history(self):
        self.conversation.clear()

    def get_formatted_conversation_history(self) -> str:
        return self.conversation.format()

    # ── Code extraction ───────────────────────────────────────────────

    @staticmethod
    def extract_code(response_text: str) -> str:
        """Pull the script out of an LLM reply.

        ``python``-tagged fence (any case) first, then a bare fence, then
        the whole reply.  An unterminated tagged fence runs to the end.
        """
        tagged = re.search(re.escape(CODE_FENCE + CODE_LANGUAGE_TAG), response_text,
                           re.IGNORECASE)
        if tagged:
            start = tagged.end()
            end = response_text.find(CODE_FENCE, start)
            code = response_text[start:] if end == -1 else response_text[start:end]
            return code.strip()

        start = response_text.find(CODE_FENCE)
        if start != -1:
            start += len(CODE_FENCE)
            end = response_text.find(CODE_FENCE, start)
            if end == -1:
                return ""
            return response_text[start:end].strip()

        return response_text.strip()
