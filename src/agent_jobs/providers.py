"""AI provider abstractions for external CLI jobs."""

from __future__ import annotations

import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCommand:
    """Command to execute for a provider."""

    executable: str
    args: Sequence[str]

    def to_list(self) -> list[str]:
        """Convert to a list of command parts."""
        return [self.executable, *self.args]


@dataclass(frozen=True)
class CliDetection:
    """Result of looking up a provider's executable."""

    available: bool
    path: str | None = None
    error: str | None = None
    install_hint: str = ""


class Provider(ABC):
    """Abstract base class for AI providers.

    The prompt is never passed on the command line; the supervisor writes it to
    the child's stdin.
    """

    name: str = ""
    SUPPORTED_MODELS: tuple[str, ...] = ()
    DEFAULT_MODEL: str | None = None
    RECOMMENDED_ROLES: tuple[str, ...] = ()
    INSTALL_HINT: str = ""

    def __init__(self, executable: str | None = None, model: str | None = None) -> None:
        self._executable = executable or self.default_executable()
        self._model = model

    def default_executable(self) -> str:
        return self.name

    @property
    def executable(self) -> str:
        return self._executable

    @property
    def recommended_roles(self) -> tuple[str, ...]:
        """Agent roles this provider is suited for."""
        return self.RECOMMENDED_ROLES

    @abstractmethod
    def build_command(
        self,
        model: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> ProviderCommand:
        """Build the command to execute for this provider."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the human-readable provider name."""

    def default_model(self) -> str | None:
        """Return the model used when none is requested.

        ``AGENT_JOBS_<NAME>_DEFAULT_MODEL`` overrides the built-in default.
        """
        env_key = f"AGENT_JOBS_{self.name.upper()}_DEFAULT_MODEL"
        return os.environ.get(env_key) or self.DEFAULT_MODEL

    def resolve_model(self, model: str | None) -> str | None:
        return model or self._model or self.default_model()

    def parse_output(self, raw: str) -> str:
        """Extract the response text from the CLI's raw output."""
        return raw.strip()

    def detect(self) -> CliDetection:
        """Check whether the provider's executable is on PATH."""
        path = shutil.which(self._executable)
        if path is None:
            return CliDetection(
                available=False,
                error=f"{self._executable} command not found in PATH",
                install_hint=self.INSTALL_HINT,
            )
        return CliDetection(available=True, path=path, install_hint=self.INSTALL_HINT)


_PROVIDERS: dict[str, type[Provider]] = {}


def register_provider(provider_cls: type[Provider]) -> type[Provider]:
    """Register a provider class under its ``name``. Usable as a decorator."""
    if not provider_cls.name:
        raise ValueError(f"Provider class {provider_cls.__name__} has no name")
    _PROVIDERS[provider_cls.name] = provider_cls
    return provider_cls


def unregister_provider(name: str) -> None:
    """Remove a provider from the registry, if present."""
    _PROVIDERS.pop(name, None)


def available_providers() -> list[str]:
    """Return the names of all registered providers."""
    return sorted(_PROVIDERS)


@register_provider
class CodexProvider(Provider):
    """Provider for Codex backend."""

    name = "codex"
    SUPPORTED_MODELS = (
        "gpt-5.1-codex-max",
        "gpt-5.1-codex",
        "gpt-5.1-codex-mini",
        "gpt-5-codex",
        "gpt-4.1",
    )
    DEFAULT_MODEL = "gpt-5.1-codex"
    RECOMMENDED_ROLES = ("architect", "planner", "critic", "analyst", "code-reviewer")
    INSTALL_HINT = "Install Codex CLI: npm install -g @openai/codex"

    def build_command(
        self,
        model: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> ProviderCommand:
        """Build codex exec command with JSONL output and model selection."""
        args: list[str] = ["exec"]
        resolved = self.resolve_model(model)
        if resolved:
            args.extend(["-m", resolved])
        args.extend(["--json", "--full-auto", *extra_args])
        return ProviderCommand(executable=self._executable, args=tuple(args))

    def parse_output(self, raw: str) -> str:
        """Collect message text from Codex JSONL events, falling back to raw output."""
        messages: list[str] = []
        for line in raw.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                # Progress lines are not JSON
                continue
            if not isinstance(event, dict):
                continue

            event_type = event.get("type")
            content = event.get("content")
            if event_type == "message" and content:
                if isinstance(content, str):
                    messages.append(content)
                elif isinstance(content, list):
                    for part in content:
                        if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
                            messages.append(part["text"])
            elif event_type == "output_text" and event.get("text"):
                messages.append(event["text"])
            elif event_type == "item.completed":
                item = event.get("item")
                if isinstance(item, dict) and item.get("type") == "agent_message" and item.get("text"):
                    messages.append(item["text"])

        return "\n".join(messages) or raw.strip()

    def get_provider_name(self) -> str:
        """Get the human-readable provider name."""
        return "Codex"


@register_provider
class GeminiProvider(Provider):
    """Provider for Google Gemini CLI backend."""

    name = "gemini"
    SUPPORTED_MODELS = (
        "gemini-3-pro-preview",
        "gemini-3-flash-preview",
        "gemini-2.5-pro",
        "gemini-2.5-flash",
        "gemini-2.0-flash",
    )
    DEFAULT_MODEL = "gemini-2.5-pro"
    RECOMMENDED_ROLES = ("designer", "executor", "writer")
    INSTALL_HINT = "Install Gemini CLI: npm install -g @google/gemini-cli"

    def build_command(
        self,
        model: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> ProviderCommand:
        """Build gemini command in non-interactive yolo mode."""
        args: list[str] = ["--yolo"]
        resolved = self.resolve_model(model)
        if resolved:
            args.extend(["--model", resolved])
        args.extend(extra_args)
        return ProviderCommand(executable=self._executable, args=tuple(args))

    def get_provider_name(self) -> str:
        """Get the human-readable provider name."""
        return "Google Gemini"


@register_provider
class ClaudeProvider(Provider):
    """Provider for Claude CLI backend."""

    name = "claude"
    SUPPORTED_MODELS = (
        "sonnet",
        "haiku",
        "opus",
    )
    DEFAULT_MODEL = "sonnet"
    RECOMMENDED_ROLES = ("executor", "explore", "researcher")
    INSTALL_HINT = "Install Claude CLI: npm install -g @anthropic-ai/claude-code"

    def __init__(
        self,
        executable: str | None = None,
        model: str | None = None,
        skip_permissions: bool = True,
    ) -> None:
        super().__init__(executable=executable, model=model)
        self._skip_permissions = skip_permissions

    def build_command(
        self,
        model: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> ProviderCommand:
        """Build claude print-mode command with permissions skipped for automation."""
        args: list[str] = ["-p"]
        resolved = self.resolve_model(model)
        if resolved:
            args.extend(["--model", resolved])
        if self._skip_permissions:
            args.append("--dangerously-skip-permissions")
        args.extend(extra_args)
        return ProviderCommand(executable=self._executable, args=tuple(args))

    def get_provider_name(self) -> str:
        """Get the human-readable provider name."""
        return "Claude CLI"


def get_supported_models(provider_name: str) -> tuple[str, ...]:
    """Get the list of supported models for a given provider."""
    try:
        return _PROVIDERS[provider_name].SUPPORTED_MODELS
    except KeyError:
        raise ValidationError(f"Unknown provider: {provider_name}") from None


def find_provider(provider_name: str) -> Provider | None:
    """Return a provider instance for a registered name, or None."""
    provider_cls = _PROVIDERS.get(provider_name)
    return provider_cls() if provider_cls is not None else None


def create_provider(provider_name: str, model: str | None = None) -> Provider:
    """Factory function to create a provider by name."""
    try:
        provider_cls = _PROVIDERS[provider_name]
    except KeyError:
        raise ValidationError(
            f"Unknown provider: {provider_name}. "
            f"Available providers: {', '.join(available_providers())}"
        ) from None
    return provider_cls(model=model)
