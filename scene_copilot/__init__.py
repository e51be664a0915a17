"""scene_copilot: LLM-assisted script generation and execution for scene hosts."""

from .context import HostContext, PromptContext, StaticHostContext, WorkflowType
from .engine import EngineResult, PythonScriptEngine, ScriptEngine, UnavailableScriptEngine
from .errors import CopilotError, SettingsError
from .execution import ErrorKind, ExecutionManager, ExecutionResult, ExecutionState, HistoryEntry
from .llm import GenerationResult, GenerationState, LLMOrchestrator
from .service import CopilotService
from .settings import CopilotSettings, LLMProvider, load_settings, save_settings

__version__ = "0.1.0"

__all__ = [
    "CopilotError",
    "CopilotService",
    "CopilotSettings",
    "EngineResult",
    "ErrorKind",
    "ExecutionManager",
    "ExecutionResult",
    "ExecutionState",
    "GenerationResult",
    "GenerationState",
    "HistoryEntry",
    "HostContext",
    "LLMOrchestrator",
    "LLMProvider",
    "PromptContext",
    "PythonScriptEngine",
    "ScriptEngine",
    "SettingsError",
    "StaticHostContext",
    "UnavailableScriptEngine",
    "WorkflowType",
    "load_settings",
    "save_settings",
]
