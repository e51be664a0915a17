"""Copilot settings: provider, model, limits, safety and the API key.

Settings live in a YAML file (``~/.scene_copilot/settings.yaml`` unless
``SCENE_COPILOT_SETTINGS`` or an explicit path says otherwise).  Only the
owning service writes it.
"""

import enum
import logging
import os
import typing
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

import yaml

from .errors import SettingsError
from .obfuscation import deobfuscate, obfuscate

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "SCENE_COPILOT_SETTINGS"
DEFAULT_DATA_DIR = Path.home() / ".scene_copilot"
DEFAULT_SETTINGS_PATH = DEFAULT_DATA_DIR / "settings.yaml"
DEFAULT_HISTORY_PATH = DEFAULT_DATA_DIR / "execution_history.json"

API_KEY_PREFIX = "sk-"
API_KEY_MIN_LENGTH = 20
MAX_TOKENS_LIMIT = 4000


class LLMProvider(str, enum.Enum):
    OPENAI = "openai"
    GITHUB_COPILOT = "github_copilot"
    AZURE_OPENAI = "azure_openai"


class ReasoningEffort(str, enum.Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Verbosity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


DEFAULT_SYSTEM_PROMPT = """\
You are an AI assistant specialized in Python scripting for technical artists \
working inside a 3D content-creation application.
Generate Python code that uses the host application's scripting API to \
accomplish technical art tasks.

Key Guidelines:
- Use only the host application's Python API and the standard library
- Focus on technical art workflows (materials, scenes, assets, animation)
- Provide clean, well-commented code
- Handle errors gracefully
- Avoid file system operations or external network calls unless specifically requested

Respond with executable Python code only, wrapped in ```python code blocks."""

DEFAULT_BLOCKED_OPERATIONS = (
    "os.",
    "subprocess",
    "__import__",
    "eval(",
    "exec(",
    "open(",
    "file(",
    "input(",
    "raw_input(",
)

_ENUM_FIELDS = {
    "provider": LLMProvider,
    "reasoning_effort": ReasoningEffort,
    "verbosity": Verbosity,
}


@dataclass
class CopilotSettings:
    provider: LLMProvider = LLMProvider.OPENAI
    model: str = "gpt-5"
    custom_endpoint_url: str = ""
    max_tokens: int = 2000
    temperature: float = 0.7
    request_timeout_seconds: float = 30.0
    max_requests_per_minute: int = 20
    enable_code_safety_validation: bool = True
    require_user_confirmation: bool = True
    blocked_operations: list[str] = field(
        default_factory=lambda: list(DEFAULT_BLOCKED_OPERATIONS))
    enable_api_logging: bool = False
    system_prompt_template: str = DEFAULT_SYSTEM_PROMPT
    reasoning_effort: ReasoningEffort = ReasoningEffort.MEDIUM
    verbosity: Verbosity = Verbosity.MEDIUM
    execution_timeout_seconds: float = 30.0
    history_path: str = str(DEFAULT_HISTORY_PATH)
    api_key: str = ""
    encrypted_api_key: str = ""

    # ── API key ────────────────────────────────────────────────────────

    def get_api_key(self) -> str:
        """Plain-text key when set, else the obfuscated legacy field."""
        if self.api_key:
            return self.api_key.strip()
        if self.encrypted_api_key:
            return deobfuscate(self.encrypted_api_key).strip()
        return ""

    def set_api_key(self, key: str):
        cleaned = "".join(key.split())
        self.api_key = cleaned
        self.encrypted_api_key = obfuscate(cleaned) if cleaned else ""

    # ── Validation ─────────────────────────────────────────────────────

    def validate(self) -> tuple[bool, str]:
        if self.provider == LLMProvider.OPENAI:
            key = self.get_api_key()
            if not key:
                return False, "OpenAI API key is required. Please set it in the copilot settings."
            if len(key) < API_KEY_MIN_LENGTH or not key.startswith(API_KEY_PREFIX):
                return False, "OpenAI API key appears to be invalid. Please check the format."

        if self.max_tokens <= 0 or self.max_tokens > MAX_TOKENS_LIMIT:
            return False, f"Max tokens must be between 1 and {MAX_TOKENS_LIMIT}."
        if not 0.0 <= self.temperature <= 1.0:
            return False, "Temperature must be between 0.0 and 1.0."
        if self.request_timeout_seconds <= 0:
            return False, "Request timeout must be greater than 0."
        return True, ""

    # ── Serialization ──────────────────────────────────────────────────

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in _ENUM_FIELDS:
            data[name] = data[name].value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CopilotSettings":
        """Build settings from plain values, raising ``SettingsError`` on a
        null or wrongly typed value.  Integers are accepted for float fields."""
        types = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        for key, value in (data or {}).items():
            if key not in types:
                logger.warning(f"Ignoring unknown setting '{key}'")
                continue
            kwargs[key] = _coerce_field(key, value, types[key])
        if "history_path" in kwargs and not kwargs["history_path"].strip():
            raise SettingsError("Setting 'history_path' must not be empty")
        return cls(**kwargs)


_TYPE_NAMES = {bool: "true or false", int: "an integer", float: "a number", str: "a string"}


def _coerce_field(name: str, value, expected):
    if value is None:
        raise SettingsError(f"Setting '{name}' must not be null")

    if name in _ENUM_FIELDS:
        try:
            return _ENUM_FIELDS[name](value)
        except (ValueError, TypeError) as exc:
            raise SettingsError(f"Invalid value for '{name}': {value!r}") from exc

    if typing.get_origin(expected) is list:
        if not isinstance(value, list):
            raise SettingsError(f"Setting '{name}' must be a list, got {value!r}")
        return [str(item) for item in value]

    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    # bool is an int subclass; keep flags and numbers apart.
    if isinstance(value, bool) != (expected is bool) or not isinstance(value, expected):
        raise SettingsError(
            f"Setting '{name}' must be {_TYPE_NAMES[expected]}, got {value!r}")
    return value


def resolve_settings_path(path: str | Path | None = None) -> Path:
    if path:
        return Path(path).expanduser()
    env = os.environ.get(SETTINGS_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return DEFAULT_SETTINGS_PATH


def load_settings(path: str | Path | None = None) -> CopilotSettings:
    """Read settings from YAML.  A missing file yields the defaults."""
    p = resolve_settings_path(path)
    if not p.exists():
        logger.debug(f"No settings file at {p}, using defaults")
        return CopilotSettings()
    try:
        with open(p, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SettingsError(f"Could not read settings file {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {p} must contain a mapping")
    return CopilotSettings.from_dict(data)


def save_settings(settings: CopilotSettings, path: str | Path | None = None) -> Path:
    """Write settings to YAML through a temp file + rename."""
    p = resolve_settings_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    data = settings.to_dict()
    tmp_path = p.with_suffix(p.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
    os.replace(tmp_path, p)
    logger.info(f"Settings saved → {p}")
    return p
