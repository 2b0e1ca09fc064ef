"""
sanitizer.py — Input and response scrubbing.
Both transforms are pure and idempotent: running them twice gives the same
string as running them once.
"""

import re

from config import MAX_INPUT_LENGTH


# Role / delimiter markers used for prompt injection
_INJECTION_PATTERNS = [
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
    re.compile(r"<\|im_start\|>", re.IGNORECASE),
    re.compile(r"<\|im_end\|>", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"\[/INST\]", re.IGNORECASE),
    re.compile(r"<s>", re.IGNORECASE),
    re.compile(r"</s>", re.IGNORECASE),
]

# Residual tool-call syntax and role markers that leak into model output
_RESPONSE_PATTERNS = [
    re.compile(r"<tool_call>.*?</tool_call>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<function=[^>]*>.*?</function>", re.IGNORECASE | re.DOTALL),
    re.compile(r"```tool_code.*?```", re.IGNORECASE | re.DOTALL),
    re.compile(r"\[TOOL_CALLS\].*?(?:\n|$)", re.IGNORECASE),
    re.compile(r"<\|(?:im_start|im_end|eot_id|start_header_id|end_header_id|python_tag)\|>", re.IGNORECASE),
    re.compile(r"^\s*(?:assistant|model)\s*:\s*", re.IGNORECASE | re.MULTILINE),
]

_BLANK_LINES = re.compile(r"\n{3,}")


def _strip_until_stable(text: str, patterns: list[re.Pattern]) -> str:
    # Removing one marker can splice two halves into a new one ("sys<s>tem:")
    while True:
        before = text
        for pattern in patterns:
            text = pattern.sub("", text)
        if text == before:
            return text


def sanitize_input(text, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Strip injection markers and cap the length of user-supplied text."""
    if not text or not isinstance(text, str):
        return ""
    cleaned = _strip_until_stable(text, _INJECTION_PATTERNS)
    cleaned = cleaned[:max_length].strip()
    # Truncation can expose a new marker at the cut point
    return _strip_until_stable(cleaned, _INJECTION_PATTERNS).strip()


def sanitize_response(text) -> str:
    """Remove leaked tool-call syntax and role markers from a final answer."""
    if not text or not isinstance(text, str):
        return ""
    cleaned = _strip_until_stable(text, _RESPONSE_PATTERNS)
    cleaned = _BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()
