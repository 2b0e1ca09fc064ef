"""
fallback_chain.py — Provider degradation chain.
Wraps every model call: primary provider → secondary provider(s) → static
template. One attempt per stage, no backoff; a stage fails on provider error,
rate limit, timeout, or a reply that does not pass application parsing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from config import (
    GEMINI_API_KEY, GROQ_API_KEY, CEREBRAS_API_KEY,
    PROVIDER_ORDER, PROVIDER_TIMEOUT_SECONDS,
)
from errors import ProviderError, ParseError
from logging_config import log_stage
from providers.base import BaseProvider, ProviderResponse
from providers.gemini_provider import GeminiProvider
from providers.groq_provider import GroqProvider
from providers.cerebras_provider import CerebrasProvider

logger = logging.getLogger(__name__)


_PROVIDER_CLASSES = {
    "gemini": (GeminiProvider, GEMINI_API_KEY),
    "groq": (GroqProvider, GROQ_API_KEY),
    "cerebras": (CerebrasProvider, CEREBRAS_API_KEY),
}

STATIC_PROVIDER = "static"
STATIC_MODEL = "fallback-static"
DEFAULT_STATIC_TEXT = (
    "I'm here to support you on your recovery journey, but I'm having trouble "
    "thinking clearly right now. Could you try again in a moment?"
)

# validate(response) raises ParseError to reject an otherwise successful reply
Validator = Callable[[ProviderResponse], None]


@dataclass
class ChainResult:
    response: ProviderResponse
    provider: str
    model: str
    stage: int  # index of the stage that served; len(providers) = static
    attempts: list[dict] = field(default_factory=list)
    is_static: bool = False


class FallbackChain:
    """Ordered provider list terminating in a static response."""

    def __init__(self, providers: list[BaseProvider], stage_timeout: float = PROVIDER_TIMEOUT_SECONDS):
        self.stage_timeout = stage_timeout
        self.providers: list[dict] = [
            {
                "name": p.name,
                "provider": p,
                "failure_count": 0,
                "avg_response_time": 0.0,
                "total_calls": 0,
                "last_used": None,
            }
            for p in providers
        ]

    # ------------------------------------------------------------------
    def _record_success(self, entry: dict, elapsed: float):
        entry["total_calls"] += 1
        entry["avg_response_time"] = round(
            (entry["avg_response_time"] * (entry["total_calls"] - 1) + elapsed)
            / entry["total_calls"],
            3,
        )
        entry["last_used"] = datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        options: dict | None = None,
        validate: Optional[Validator] = None,
        static_text: str | None = None,
    ) -> ChainResult:
        """Try each stage once, in order, and return the first acceptable reply.

        The static stage is never validated and never fails.
        """
        attempts: list[dict] = []

        for stage, entry in enumerate(self.providers):
            provider_name = entry["name"]
            t0 = time.monotonic()
            try:
                response = await asyncio.wait_for(
                    entry["provider"].complete(messages, tools, options),
                    timeout=self.stage_timeout,
                )
                if validate is not None:
                    validate(response)
            except asyncio.TimeoutError:
                error, status = "Stage timeout", "timeout"
            except ParseError as e:
                error, status = str(e), "parse_error"
            except ProviderError as e:
                error, status = str(e), e.kind
            except Exception as e:
                # Adapter bug or unexpected SDK error: still just a failed stage
                logger.exception(f"Unexpected error from provider {provider_name}")
                error, status = f"{type(e).__name__}: {e}", "error"
            else:
                elapsed = time.monotonic() - t0
                self._record_success(entry, elapsed)
                attempts.append({
                    "provider": provider_name, "status": "success",
                    "error": None, "elapsed_ms": int(elapsed * 1000),
                })
                log_stage(logger, stage, provider_name, "success")
                return ChainResult(
                    response=response,
                    provider=provider_name,
                    model=response.model,
                    stage=stage,
                    attempts=attempts,
                )

            entry["failure_count"] += 1
            attempts.append({
                "provider": provider_name, "status": status,
                "error": error, "elapsed_ms": int((time.monotonic() - t0) * 1000),
            })
            log_stage(logger, stage, provider_name, status, error)

        # --- Static final stage ---
        stage = len(self.providers)
        attempts.append({"provider": STATIC_PROVIDER, "status": "success", "error": None, "elapsed_ms": 0})
        log_stage(logger, stage, STATIC_PROVIDER, "served")
        return ChainResult(
            response=ProviderResponse(
                text=static_text or DEFAULT_STATIC_TEXT,
                provider=STATIC_PROVIDER,
                model=STATIC_MODEL,
            ),
            provider=STATIC_PROVIDER,
            model=STATIC_MODEL,
            stage=stage,
            attempts=attempts,
            is_static=True,
        )

    # ------------------------------------------------------------------
    def get_provider_status(self) -> list:
        """Return current runtime status of every provider stage."""
        return [
            {
                "stage": i,
                "name": entry["name"],
                "failure_count": entry["failure_count"],
                "avg_response_time": entry["avg_response_time"],
                "total_calls": entry["total_calls"],
                "last_used": entry["last_used"],
            }
            for i, entry in enumerate(self.providers)
        ]


def build_providers(order: list[str] | None = None) -> list[BaseProvider]:
    """Instantiate providers in fallback order, skipping any without a key."""
    providers = []
    for name in order or PROVIDER_ORDER:
        spec = _PROVIDER_CLASSES.get(name)
        if spec is None:
            logger.warning(f"Unknown provider in PROVIDER_ORDER: {name}")
            continue
        provider_class, api_key = spec
        if api_key:
            providers.append(provider_class(api_key=api_key))
    if not providers:
        logger.warning("No model provider keys configured; every reply will use the static stage")
    return providers


_chain_instance = None


def get_fallback_chain() -> FallbackChain:
    global _chain_instance
    if _chain_instance is None:
        _chain_instance = FallbackChain(build_providers())
    return _chain_instance
