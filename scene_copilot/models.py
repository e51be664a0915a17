"""Model families: endpoint, payload shape, timeout floor and reply schema.

Everything that varies between OpenAI model families is chosen in one
step from the model identifier, so a request never mixes the payload of
one family with the endpoint or parser of another.

Chat Completions families send::

    {"model", "messages": [{role, content}], "max_tokens", "temperature"}

and read ``choices[0].message.content`` / ``usage.total_tokens``.

The Responses family (gpt-5) sends::

    {"model", "input": [{role, content}], "max_output_tokens",
     "reasoning": {"effort"}, "text": {"verbosity"}}

and reads ``choices[0].text`` (falling back to ``choices[0].message.content``
and then the ``output[].content[]`` items) with token usage taken from
``output_tokens``, ``completion_tokens`` or ``total_tokens``.
"""

import json
from dataclasses import dataclass

from .settings import CopilotSettings

OPENAI_API_BASE = "https://api.openai.com/v1"
CHAT_COMPLETIONS_URL = OPENAI_API_BASE + "/chat/completions"
RESPONSES_URL = OPENAI_API_BASE + "/responses"

SCHEMA_CHAT = "chat"
SCHEMA_RESPONSES = "responses"

RESPONSES_TOKEN_FIELDS = ("output_tokens", "completion_tokens", "total_tokens")


@dataclass(frozen=True)
class ModelProfile:
    family: str
    prefixes: tuple[str, ...]
    endpoint: str
    schema: str
    supports_temperature: bool = True
    token_field: str = "max_tokens"
    min_timeout_seconds: float = 0.0

    def matches(self, model: str) -> bool:
        if not self.prefixes:
            return True
        return model.lower().startswith(self.prefixes)

    def effective_timeout(self, configured: float) -> float:
        return max(configured, self.min_timeout_seconds)

    def endpoint_for(self, settings: CopilotSettings) -> str:
        return settings.custom_endpoint_url.strip() or self.endpoint

    # ── Payloads ──────────────────────────────────────────────────────

    def build_payload(self, settings: CopilotSettings, system_prompt: str,
                      user_prompt: str) -> dict:
        turns = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if self.schema == SCHEMA_RESPONSES:
            return {
                "model": settings.model,
                "input": turns,
                "max_output_tokens": settings.max_tokens,
                "reasoning": {"effort": settings.reasoning_effort.value},
                "text": {"verbosity": settings.verbosity.value},
            }

        payload = {
            "model": settings.model,
            "messages": turns,
            self.token_field: settings.max_tokens,
        }
        if self.supports_temperature:
            payload["temperature"] = settings.temperature
        return payload

    # ── Replies ───────────────────────────────────────────────────────

    def parse_response(self, body: str) -> "ParsedResponse":
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, TypeError):
            return ParsedResponse(error="Failed to parse JSON response from OpenAI")
        if not isinstance(data, dict):
            return ParsedResponse(error="Failed to parse JSON response from OpenAI")

        if "error" in data and data["error"]:
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            return ParsedResponse(error=message or "Unknown API error")

        if self.schema == SCHEMA_RESPONSES:
            text = _responses_text(data)
            tokens = _first_int(data.get("usage"), RESPONSES_TOKEN_FIELDS)
        else:
            text = _chat_text(data)
            tokens = _first_int(data.get("usage"), ("total_tokens",))

        if text is None:
            return ParsedResponse(error="LLM response did not contain any generated text",
                                  tokens_used=tokens)
        return ParsedResponse(text=text, tokens_used=tokens)


@dataclass
class ParsedResponse:
    text: str | None = None
    tokens_used: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and self.text is not None


def _first_choice(data: dict) -> dict:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _message_content(choice: dict) -> str | None:
    message = choice.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return None


def _chat_text(data: dict) -> str | None:
    return _message_content(_first_choice(data))


def _responses_text(data: dict) -> str | None:
    choice = _first_choice(data)
    if isinstance(choice.get("text"), str):
        return choice["text"]
    content = _message_content(choice)
    if content is not None:
        return content

    parts = []
    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for entry in item.get("content") or []:
            if isinstance(entry, dict) and entry.get("type") == "output_text" \
                    and isinstance(entry.get("text"), str):
                parts.append(entry["text"])
    if parts:
        return "\n".join(parts)
    if isinstance(data.get("output_text"), str):
        return data["output_text"]
    return None


def _first_int(usage, keys) -> int:
    if not isinstance(usage, dict):
        return 0
    for key in keys:
        value = usage.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


# Evaluated top to bottom; the last entry catches every other model.
MODEL_PROFILES = (
    ModelProfile(
        family="gpt-5",
        prefixes=("gpt-5",),
        endpoint=RESPONSES_URL,
        schema=SCHEMA_RESPONSES,
        supports_temperature=False,
        token_field="max_output_tokens",
        min_timeout_seconds=120.0,
    ),
    ModelProfile(
        family="reasoning",
        prefixes=("o1", "o3", "o4"),
        endpoint=CHAT_COMPLETIONS_URL,
        schema=SCHEMA_CHAT,
        supports_temperature=False,
        token_field="max_completion_tokens",
        min_timeout_seconds=120.0,
    ),
    ModelProfile(
        family="chat",
        prefixes=(),
        endpoint=CHAT_COMPLETIONS_URL,
        schema=SCHEMA_CHAT,
    ),
)


def select_profile(model: str) -> ModelProfile:
    for profile in MODEL_PROFILES:
        if profile.matches(model):
            return profile
    return MODEL_PROFILES[-1]
