"""Story Session — memory-bounded interactive story sessions over an LLM."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import (
    LlmConfig,
    ScenarioPaths,
    SessionConfig,
    StoryGameConfig,
    load_config,
)
from .context import ScenarioContextBuilder
from .errors import (
    ConfigError,
    CredentialError,
    InvalidRecordError,
    NotStartedError,
    PersistenceError,
    StorySessionError,
    TransportError,
)
from .export import export_markdown, format_markdown
from .fsm import FSMState, SessionState
from .openrouter_provider import OpenRouterProvider
from .provider import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    LLMProvider,
    StubLLMProvider,
)
from .provider_factory import ProviderFactory
from .session_manager import (
    Notice,
    NoticeLevel,
    OperationResult,
    SessionManager,
    UndoResult,
)
from .session_store import SessionRecord, SessionStore, Turn
from .summarizer import Summarizer, SummaryResult, format_transcript
from .telemetry import StoryTracer, TelemetryConfig

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatRole",
    "ConfigError",
    "CredentialError",
    "FSMState",
    "InvalidRecordError",
    "LLMProvider",
    "LlmConfig",
    "NotStartedError",
    "Notice",
    "NoticeLevel",
    "OpenRouterProvider",
    "OperationResult",
    "PersistenceError",
    "ProviderFactory",
    "ScenarioContextBuilder",
    "ScenarioPaths",
    "SessionConfig",
    "SessionManager",
    "SessionRecord",
    "SessionState",
    "SessionStore",
    "StoryGameConfig",
    "StorySessionError",
    "StoryTracer",
    "StubLLMProvider",
    "Summarizer",
    "SummaryResult",
    "TelemetryConfig",
    "TransportError",
    "Turn",
    "UndoResult",
    "__version__",
    "export_markdown",
    "format_markdown",
    "format_transcript",
    "load_config",
]
