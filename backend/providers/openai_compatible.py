import json

import httpx

from config import PROVIDER_TIMEOUT_SECONDS
from errors import ProviderError, ParseError
from providers.base import BaseProvider, ProviderResponse, ToolCall


class OpenAICompatibleProvider(BaseProvider):
    """Shared adapter for chat-completions APIs that speak the OpenAI wire format."""

    endpoint: str = ""

    def __init__(self, api_key: str, timeout: float = PROVIDER_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.timeout = timeout

    # ------------------------------------------------------------------
    @staticmethod
    def _to_wire_messages(messages: list[dict]) -> list[dict]:
        wire = []
        for msg in messages:
            role = msg["role"]
            if role == "tool":
                wire.append({
                    "role": "tool",
                    "tool_call_id": msg.get("tool_call_id", ""),
                    "content": msg.get("content", ""),
                })
            elif role == "assistant" and msg.get("tool_calls"):
                wire.append({
                    "role": "assistant",
                    "content": msg.get("content") or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                        }
                        for tc in msg["tool_calls"]
                    ],
                })
            else:
                wire.append({"role": role, "content": msg.get("content", "")})
        return wire

    def _build_body(self, messages: list[dict], tools: list[dict] | None, options: dict) -> dict:
        body = {
            "model": self.model_for(options),
            "messages": self._to_wire_messages(messages),
            "max_tokens": options.get("max_tokens", 1024),
        }
        if "temperature" in options:
            body["temperature"] = options["temperature"]
        if tools:
            body["tools"] = [{"type": "function", "function": t} for t in tools]
            body["tool_choice"] = options.get("tool_choice", "auto")
        return body

    def _parse(self, data: dict, model: str) -> ProviderResponse:
        try:
            message = data["choices"][0]["message"]
            calls = []
            for raw in message.get("tool_calls") or []:
                fn = raw["function"]
                args = fn.get("arguments") or "{}"
                calls.append(ToolCall(
                    id=raw.get("id") or f"call_{len(calls)}",
                    name=fn["name"],
                    arguments=json.loads(args) if isinstance(args, str) else args,
                ))
            usage = data.get("usage") or {}
            return ProviderResponse(
                text=message.get("content"),
                tool_calls=calls,
                provider=self.name,
                model=model,
                tokens_used=usage.get("total_tokens"),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ParseError("Malformed completion payload", provider=self.name, details=str(e))

    # ------------------------------------------------------------------
    async def complete(self, messages, tools=None, options=None) -> ProviderResponse:
        options = options or {}
        body = self._build_body(messages, tools, options)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.endpoint, headers=headers, json=body)
        except httpx.TimeoutException:
            raise ProviderError("Timeout", provider=self.name, kind="timeout")
        except httpx.HTTPError as e:
            raise ProviderError("Network error", provider=self.name, kind="network", details=str(e))

        if response.status_code == 429:
            raise ProviderError("Rate limited", provider=self.name, kind="rate_limit", status_code=429)
        if response.status_code >= 400:
            raise ProviderError(
                f"HTTP {response.status_code}", provider=self.name,
                status_code=response.status_code, details=response.text[:300],
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError("Response body is not JSON", provider=self.name, details=str(e))
        return self._parse(data, body["model"])
