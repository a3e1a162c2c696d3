"""
Configuration for DesktopTest and its backends.

Everything environment-dependent is read once, at construction, from an
explicit mapping (usually ``os.environ``) so that behavior is reproducible
in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from deskprobe.core.contracts import TestMode


class VLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    VOLCENGINE = "volcengine"
    DOUBAO = "doubao"
    AGENT = "agent"
    CUSTOM = "custom"


class AgentEnvironment(str, Enum):
    CURSOR = "cursor"
    CLAUDE_CODE = "claude-code"
    VSCODE_CLAUDE = "vscode-claude"
    CLAUDE_DESKTOP = "claude-desktop"
    ANTHROPIC_MCP = "anthropic-mcp"
    UNKNOWN = "unknown"


PROVIDER_ALIASES: dict[str, VLMProvider] = {
    "anthropic": VLMProvider.ANTHROPIC,
    "claude": VLMProvider.ANTHROPIC,
    "openai": VLMProvider.OPENAI,
    "gpt": VLMProvider.OPENAI,
    "volcengine": VLMProvider.VOLCENGINE,
    "volc": VLMProvider.VOLCENGINE,
    "doubao": VLMProvider.DOUBAO,
    "agent": VLMProvider.AGENT,
    "auto": VLMProvider.AGENT,
    "cursor": VLMProvider.AGENT,
    "custom": VLMProvider.CUSTOM,
}

DEFAULT_MODELS: dict[VLMProvider, str] = {
    VLMProvider.ANTHROPIC: "claude-sonnet-4-20250514",
    VLMProvider.OPENAI: "gpt-4o",
    VLMProvider.VOLCENGINE: "doubao-1-5-vision-pro",
    VLMProvider.DOUBAO: "doubao-1-5-vision-pro",
    VLMProvider.AGENT: "agent",
}

# Environment variables that carry an API key, per provider, in lookup order.
API_KEY_VARIABLES: dict[VLMProvider, tuple[str, ...]] = {
    VLMProvider.ANTHROPIC: ("ANTHROPIC_API_KEY",),
    VLMProvider.OPENAI: ("OPENAI_API_KEY",),
    VLMProvider.VOLCENGINE: ("VOLCENGINE_API_KEY", "DOUBAO_API_KEY"),
    VLMProvider.DOUBAO: ("DOUBAO_API_KEY", "VOLCENGINE_API_KEY"),
    VLMProvider.CUSTOM: ("DESKPROBE_VLM_API_KEY",),
}

BASE_URL_VARIABLES: dict[VLMProvider, tuple[str, ...]] = {
    VLMProvider.OPENAI: ("OPENAI_BASE_URL",),
    VLMProvider.VOLCENGINE: ("VOLCENGINE_BASE_URL",),
    VLMProvider.DOUBAO: ("VOLCENGINE_BASE_URL",),
    VLMProvider.CUSTOM: ("DESKPROBE_VLM_BASE_URL",),
}

# Checked in order; the first environment with any marker set wins.
AGENT_MARKERS: tuple[tuple[AgentEnvironment, tuple[str, ...]], ...] = (
    (AgentEnvironment.CURSOR, ("CURSOR_SESSION", "CURSOR_WORKSPACE", "CURSOR_IDE", "CURSOR_TRACE_ID")),
    (AgentEnvironment.CLAUDE_CODE, ("CLAUDE_CODE", "CLAUDE_CLI", "ANTHROPIC_AGENT", "CLAUDE_SESSION_ID")),
    (AgentEnvironment.VSCODE_CLAUDE, ("VSCODE_CLAUDE", "CLAUDE_VSCODE")),
    (AgentEnvironment.CLAUDE_DESKTOP, ("CLAUDE_DESKTOP", "CLAUDE_APP")),
    (AgentEnvironment.ANTHROPIC_MCP, ("MCP_SERVER", "MCP_SESSION")),
)

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in _TRUTHY


def _first(env: Mapping[str, str], names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def normalize_provider(provider: "VLMProvider | str") -> VLMProvider:
    """Map a provider name or alias to a VLMProvider; unknown names are custom."""
    if isinstance(provider, VLMProvider):
        return provider
    return PROVIDER_ALIASES.get(str(provider).strip().lower(), VLMProvider.CUSTOM)


def detect_agent_environment(env: Mapping[str, str]) -> Optional[AgentEnvironment]:
    """
    Detect whether we are running inside an AI agent host.

    Args:
        env: Environment mapping to inspect

    Returns:
        The detected environment, or None when no agent host is present
    """
    for environment, markers in AGENT_MARKERS:
        if environment == AgentEnvironment.VSCODE_CLAUDE:
            if _first(env, markers) or (env.get("VSCODE_PID") and not env.get("ANTHROPIC_API_KEY")):
                return environment
            continue
        if _first(env, markers):
            return environment
    if _flag(env, "USE_AGENT_MODE"):
        return AgentEnvironment.UNKNOWN
    return None


def should_use_agent_mode(env: Mapping[str, str]) -> bool:
    return (
        detect_agent_environment(env) is not None
        or _flag(env, "USE_CURSOR")
        or _flag(env, "USE_AGENT_MODE")
    )


@dataclass
class VLMConfig:
    """Configuration for the visual resolver."""
    provider: VLMProvider = VLMProvider.ANTHROPIC
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    max_tokens: int = 4096
    request_timeout_s: float = 60.0
    track_cost: bool = True
    # Visual hits below this confidence are treated as not found.
    min_confidence: float = 0.0

    # Agent mode file exchange
    agent_dir: str = ".agent-test-screenshots"
    agent_response: Optional[str] = None
    agent_response_timeout_s: float = 0.0
    agent_poll_interval_s: float = 0.25

    def __post_init__(self) -> None:
        self.provider = normalize_provider(self.provider)

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.provider, "gpt-4o")


@dataclass
class CDPConfig:
    """Chrome DevTools Protocol connection settings."""
    endpoint: str = "http://localhost:9222"
    connect_timeout_ms: int = 30000


@dataclass
class BridgeConfig:
    """External helper process settings."""
    command: tuple[str, ...] = ("python3", "server.py")
    cwd: Optional[str] = None
    startup_timeout_s: float = 10.0
    call_timeout_s: float = 30.0
    sweep_interval_s: float = 0.5
    # Screenshots travel as base64 inside a single line.
    max_line_bytes: int = 64 * 1024 * 1024


@dataclass
class NativeConfig:
    """OS-level input settings."""
    enabled: bool = True
    click_interval_s: float = 0.05
    type_interval_s: float = 0.0
    jpeg_quality: int = 75
    # Pixels of wheel delta per scroll notch
    scroll_step_px: int = 100


@dataclass
class DesktopTestConfig:
    """Configuration for DesktopTest."""
    mode: TestMode = TestMode.HYBRID
    timeout_ms: int = 30000
    debug: bool = False
    cdp: Optional[CDPConfig] = field(default_factory=CDPConfig)
    vlm: Optional[VLMConfig] = None
    bridge: Optional[BridgeConfig] = None
    native: Optional[NativeConfig] = field(default_factory=NativeConfig)
    agent_environment: Optional[AgentEnvironment] = None

    def __post_init__(self) -> None:
        if not isinstance(self.mode, TestMode):
            self.mode = TestMode(str(self.mode).lower())

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "DesktopTestConfig":
        """
        Build a config from environment variables.

        Args:
            env: Mapping to read from, defaults to os.environ

        Returns:
            A fully populated DesktopTestConfig
        """
        env = os.environ if env is None else env
        agent_environment = detect_agent_environment(env)

        vlm: Optional[VLMConfig] = None
        provider_name = env.get("DESKPROBE_VLM_PROVIDER")
        if provider_name:
            provider = normalize_provider(provider_name)
        elif env.get("ANTHROPIC_API_KEY"):
            provider = VLMProvider.ANTHROPIC
        elif env.get("OPENAI_API_KEY"):
            provider = VLMProvider.OPENAI
        elif env.get("VOLCENGINE_API_KEY") or env.get("DOUBAO_API_KEY"):
            provider = VLMProvider.VOLCENGINE
        elif should_use_agent_mode(env):
            provider = VLMProvider.AGENT
        else:
            provider = None

        if provider is not None:
            vlm = VLMConfig(
                provider=provider,
                api_key=_first(env, API_KEY_VARIABLES.get(provider, ())),
                base_url=_first(env, BASE_URL_VARIABLES.get(provider, ())),
                model=env.get("DESKPROBE_VLM_MODEL") or None,
                agent_response=env.get("DESKPROBE_AGENT_RESPONSE") or None,
            )
            min_confidence = env.get("DESKPROBE_VLM_MIN_CONFIDENCE")
            if min_confidence:
                vlm.min_confidence = float(min_confidence)

        bridge: Optional[BridgeConfig] = None
        bridge_command = env.get("DESKPROBE_BRIDGE_COMMAND")
        if bridge_command:
            bridge = BridgeConfig(command=tuple(bridge_command.split()))

        native = None if _flag(env, "DESKPROBE_DISABLE_NATIVE") else NativeConfig()

        return cls(
            mode=TestMode(env.get("DESKPROBE_MODE", TestMode.HYBRID.value).lower()),
            timeout_ms=int(env.get("DESKPROBE_TIMEOUT_MS", "30000")),
            debug=_flag(env, "DESKPROBE_DEBUG"),
            cdp=CDPConfig(endpoint=env.get("DESKPROBE_CDP_ENDPOINT", "http://localhost:9222")),
            vlm=vlm,
            bridge=bridge,
            native=native,
            agent_environment=agent_environment,
        )
