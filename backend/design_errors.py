"""
Design Errors - Failure taxonomy for the generation pipeline

Provider and parse errors end a generation attempt and are surfaced to the
user. Resolution warnings are recovered locally by the renderer. Render errors
abort the affected subtree, or the whole render when the root itself fails.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Diagnostic payloads must stay small
EXCERPT_MAX_CHARS = 500

PARSE_FAILED_MESSAGE = (
    "Failed to parse response as JSON. The response may have been truncated. "
    "Try a simpler design request."
)


class ProviderError(Exception):
    """Transport, auth or rate-limit failure from a generative-model call."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        self.status = status
        self.body = body or ""
        self.message = message
        text = message
        if status is not None:
            text = f"{message} (status {status})"
        if self.body:
            text = f"{text}: {self.body}"
        super().__init__(text)


class GenerationCancelled(ProviderError):
    """The caller signalled cancellation while the stream was being read."""

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


class ParseError(Exception):
    """Raw model output could not be coerced into a valid design document."""

    def __init__(self, message: str = PARSE_FAILED_MESSAGE, raw_text: str = ""):
        self.message = message
        self.excerpt = make_excerpt(raw_text)
        super().__init__(message)


class RenderError(Exception):
    """A host-scene mutation failed and the render could not continue."""

    def __init__(self, node_name: str, cause: Any = None):
        self.node_name = node_name
        self.cause = cause
        reason = str(cause) if cause is not None else "unknown failure"
        super().__init__(f"Failed to render '{node_name}': {reason}")


@dataclass
class ResolutionWarning:
    """A symbolic reference that did not resolve and the fallback that was used.

    Never raised. The renderer collects these on the artifact and logs them.
    """

    kind: str  # "color" | "spacing" | "text_style" | "font" | "component" | "binding"
    reference: str
    fallback: str
    node_name: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "kind": self.kind,
            "reference": self.reference,
            "fallback": self.fallback,
            "node_name": self.node_name,
        }

    def __str__(self) -> str:
        where = f" on '{self.node_name}'" if self.node_name else ""
        return f"{self.kind} reference '{self.reference}'{where} not resolved, using {self.fallback}"


def make_excerpt(text: str, limit: int = EXCERPT_MAX_CHARS) -> str:
    """Return at most `limit` characters of `text`, marking the cut."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
