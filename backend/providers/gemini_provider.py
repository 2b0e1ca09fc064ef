import json
import uuid

import httpx

from config import PROVIDER_TIMEOUT_SECONDS
from errors import ProviderError, ParseError
from providers.base import BaseProvider, ProviderResponse, ToolCall


GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiProvider(BaseProvider):
    """Provider for Google Gemini via the REST generateContent API."""

    def __init__(self, api_key: str, timeout: float = PROVIDER_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "gemini"

    # ------------------------------------------------------------------
    @staticmethod
    def _to_contents(messages: list[dict]) -> tuple[str | None, list[dict]]:
        """Split out the system prompt and convert the rest to Gemini contents.
        Consecutive turns with the same Gemini role are merged."""
        system_parts = []
        contents: list[dict] = []

        def push(role: str, part: dict):
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].append(part)
            else:
                contents.append({"role": role, "parts": [part]})

        for msg in messages:
            role = msg["role"]
            if role == "system":
                system_parts.append(msg.get("content", ""))
            elif role == "user":
                push("user", {"text": msg.get("content", "")})
            elif role == "assistant":
                if msg.get("content"):
                    push("model", {"text": msg["content"]})
                for tc in msg.get("tool_calls") or []:
                    push("model", {"functionCall": {"name": tc.name, "args": tc.arguments}})
            elif role == "tool":
                raw = msg.get("content", "")
                try:
                    payload = json.loads(raw)
                except (TypeError, ValueError):
                    payload = raw
                if not isinstance(payload, dict):
                    payload = {"result": payload}
                push("user", {"functionResponse": {"name": msg.get("name", ""), "response": payload}})

        system = "\n\n".join(p for p in system_parts if p) or None
        return system, contents

    def _build_body(self, messages, tools, options) -> dict:
        system, contents = self._to_contents(messages)
        body: dict = {"contents": contents}
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            body["tools"] = [{"functionDeclarations": tools}]
            mode = "ANY" if options.get("tool_choice") == "required" else "AUTO"
            body["toolConfig"] = {"functionCallingConfig": {"mode": mode}}
        generation = {"maxOutputTokens": options.get("max_tokens", 1024)}
        if "temperature" in options:
            generation["temperature"] = options["temperature"]
        body["generationConfig"] = generation
        return body

    def _parse(self, data: dict, model: str) -> ProviderResponse:
        try:
            parts = data["candidates"][0]["content"].get("parts") or []
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError("Response has no candidates", provider=self.name, details=str(e))

        texts = []
        calls = []
        for part in parts:
            if "functionCall" in part:
                fc = part["functionCall"]
                if not fc.get("name"):
                    raise ParseError("functionCall without a name", provider=self.name)
                calls.append(ToolCall(
                    id=f"call_{uuid.uuid4().hex[:12]}",
                    name=fc["name"],
                    arguments=fc.get("args") or {},
                ))
            elif part.get("text"):
                texts.append(part["text"])

        usage = data.get("usageMetadata") or {}
        return ProviderResponse(
            text="".join(texts) or None,
            tool_calls=calls,
            provider=self.name,
            model=model,
            tokens_used=usage.get("totalTokenCount"),
        )

    # ------------------------------------------------------------------
    async def complete(self, messages, tools=None, options=None) -> ProviderResponse:
        options = options or {}
        model = self.model_for(options)
        body = self._build_body(messages, tools, options)
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(GEMINI_ENDPOINT.format(model=model), headers=headers, json=body)
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
        return self._parse(data, model)
