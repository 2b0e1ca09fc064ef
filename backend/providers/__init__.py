from providers.base import BaseProvider, ProviderResponse, ToolCall
from providers.openai_compatible import OpenAICompatibleProvider
from providers.gemini_provider import GeminiProvider
from providers.groq_provider import GroqProvider
from providers.cerebras_provider import CerebrasProvider


__all__ = [
    "BaseProvider",
    "ProviderResponse",
    "ToolCall",
    "OpenAICompatibleProvider",
    "GeminiProvider",
    "GroqProvider",
    "CerebrasProvider",
]
