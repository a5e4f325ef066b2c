"""
Helper utilities for BackpackFlow.

Text handling shared by the example nodes and the CLI.
"""

import json
import re
from typing import Any, Optional
from urllib.parse import urlparse


def sanitize_text(text: Optional[str]) -> str:
    """
    Sanitize text for safe prompting and display.

    Args:
        text: Input text to sanitize

    Returns:
        Sanitized text string
    """
    if not text:
        return ""

    # Remove null bytes
    text = text.replace("\x00", "")

    # Normalize whitespace
    text = re.sub(r"\s+", " ", text)

    # Remove control characters except newlines and tabs
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]", "", text)

    return text.strip()


def extract_domain(url: str) -> str:
    """
    Extract the domain from a URL.

    Args:
        url: Full URL string

    Returns:
        Domain string (e.g., "reuters.com")
    """
    try:
        parsed = urlparse(url)
        domain = parsed.netloc.lower()

        # Remove www. prefix
        if domain.startswith("www."):
            domain = domain[4:]

        return domain
    except Exception:
        return ""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```) if present."""
    text = (text or "").strip()
    if not text.startswith("```"):
        return text

    lines = text.split("\n")
    if lines[-1].strip() == "```":
        lines = lines[1:-1]
    else:
        lines = lines[1:]
    return "\n".join(lines).strip()


def truncate_text(text: str, max_length: int = 500, suffix: str = "...") -> str:
    """
    Truncate text to maximum length, preserving word boundaries.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to append if truncated

    Returns:
        Truncated text string
    """
    if len(text) <= max_length:
        return text

    truncated = text[:max_length - len(suffix)]

    # Find last space to avoid cutting words
    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        truncated = truncated[:last_space]

    return truncated + suffix


def to_display_text(content: Any) -> str:
    """Render tool output or other payloads as text for prompts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, indent=2, default=str)
    except (TypeError, ValueError):
        return str(content)


def format_duration(seconds: float) -> str:
    """Format seconds as ``850ms`` or ``2.31s``."""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    return f"{seconds:.2f}s"
