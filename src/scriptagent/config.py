"""
Configuration for the agent system.

All configuration is loaded from environment variables so the same code
runs against any OpenAI-compatible backend (vLLM, Ollama, OpenAI) and
either a local or a remote sandbox without code changes.
"""

import os
from dataclasses import dataclass, field


@dataclass
class LLMConfig:
    """Configuration for the LLM client."""
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("LLM_BASE_URL", "http://localhost:8000/v1"),
            api_key=os.getenv("LLM_API_KEY", ""),
            model=os.getenv("LLM_MODEL", ""),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4096")),
        )


@dataclass
class ContextConfig:
    """
    Configuration for transcript trimming.

    Persistent entries always survive. Ephemeral history is trimmed
    oldest-first once the estimate exceeds the budget. Tokens are
    approximated as chars/4.
    """
    token_budget: int = 128000
    chars_per_token: float = 4.0
    reserved_for_response: int = 4096

    @classmethod
    def from_env(cls) -> "ContextConfig":
        """Load configuration from environment variables."""
        return cls(
            token_budget=int(os.getenv("CONTEXT_TOKEN_BUDGET", "128000")),
            chars_per_token=float(os.getenv("CONTEXT_CHARS_PER_TOKEN", "4.0")),
            reserved_for_response=int(os.getenv("CONTEXT_RESERVED_FOR_RESPONSE", "4096")),
        )

    @property
    def available_budget(self) -> int:
        """Tokens available for context (excluding response reservation)."""
        return self.token_budget - self.reserved_for_response


@dataclass
class LoopConfig:
    """
    Configuration for the function-call loop.

    max_turns bounds a run. cycle_threshold, when set, injects the
    loop-prevention prompt after that many dispatches without one, in
    addition to the identical-call check that is always on.
    """
    max_turns: int = 50
    cycle_threshold: int | None = None

    @classmethod
    def from_env(cls) -> "LoopConfig":
        """Load configuration from environment variables."""
        threshold = os.getenv("AGENT_CYCLE_THRESHOLD")
        return cls(
            max_turns=int(os.getenv("AGENT_MAX_TURNS", "50")),
            cycle_threshold=int(threshold) if threshold else None,
        )


@dataclass
class SandboxConfig:
    """
    Configuration for script execution.

    With url unset scripts run in a local subprocess; with it set they are
    posted to a sandbox server's /exec endpoint.
    """
    url: str | None = None
    timeout: int = 30

    @classmethod
    def from_env(cls) -> "SandboxConfig":
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("SANDBOX_URL") or None,
            timeout=int(os.getenv("SANDBOX_TIMEOUT", "30")),
        )


@dataclass
class AgentConfig:
    """Combined configuration for the entire agent system."""
    llm: LLMConfig
    context: ContextConfig = field(default_factory=ContextConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load all configuration from environment variables."""
        return cls(
            llm=LLMConfig.from_env(),
            context=ContextConfig.from_env(),
            loop=LoopConfig.from_env(),
            sandbox=SandboxConfig.from_env(),
        )
