from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from config import MODEL_TIERS


@dataclass
class ToolCall:
    """A model's request to run one tool."""

    id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class ProviderResponse:
    """Normalized provider reply: final text, tool requests, or both."""

    text: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    provider: str = ""
    model: str = ""
    tokens_used: int | None = None


class BaseProvider(ABC):
    """Abstract base class for all model providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The name of this provider (e.g. 'gemini', 'groq')."""
        ...

    def model_for(self, options: dict | None) -> str:
        """Resolve the model id for the requested tier ('fast' by default)."""
        options = options or {}
        if options.get("model"):
            return options["model"]
        tier = options.get("model_tier", "fast")
        tier_models = MODEL_TIERS.get(tier) or MODEL_TIERS["fast"]
        return tier_models.get(self.name) or MODEL_TIERS["fast"][self.name]

    @abstractmethod
    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        options: dict | None = None,
    ) -> ProviderResponse:
        """
        Send one completion request.

        Args:
            messages: OpenAI-style dicts with 'role' and 'content'; assistant
                turns may carry 'tool_calls' and tool turns 'tool_call_id'/'name'.
            tools: Provider-neutral declarations {name, description, parameters}.
            options: model_tier, model, tool_choice ('auto' | 'required'),
                max_tokens, temperature.

        Returns:
            ProviderResponse on success.

        Raises:
            ProviderError: non-success status, rate limit, timeout, network.
            ParseError: a 2xx reply whose body cannot be interpreted.
        """
        ...
