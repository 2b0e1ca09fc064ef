from providers.openai_compatible import OpenAICompatibleProvider


class CerebrasProvider(OpenAICompatibleProvider):
    """Provider for Cerebras AI (OpenAI-compatible)."""

    endpoint = "https://api.cerebras.ai/v1/chat/completions"

    @property
    def name(self) -> str:
        return "cerebras"
