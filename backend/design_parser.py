"""
Design Parser - Turns raw (possibly truncated) model output into a DesignDocument

The model is asked for bare JSON but routinely wraps it in a code fence, adds
prose around it, or runs out of output tokens mid-document. Parsing therefore
goes: strip fence → slice the object span → strict parse → repair → strict
parse → lenient schema validation (a malformed optional field is dropped, never
fatal).
"""

import json
import logging
import re
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from design_errors import ParseError
from design_schema import DesignDocument

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_OPEN_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*")
_NUMBER_RE = re.compile(r"^-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_PARTIAL_UNICODE_RE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
_LITERALS = ("true", "false", "null")
_TOKEN_STOP = set(' \t\r\n,:]}"{[')


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Truncated before the closing fence
    return _OPEN_FENCE_RE.sub("", text, count=1)


def extract_json_text(raw_text: str) -> str:
    """Strip a code fence and slice from the first '{' to the last '}'.

    If there is no closing brace after the first '{' (the response was cut
    off early) the slice runs to end of text so repair has the full tail.
    """
    text = _strip_code_fence(raw_text or "")
    first = text.find("{")
    if first == -1:
        return text
    last = text.rfind("}")
    if last > first:
        return text[first:last + 1]
    return text[first:]


def _is_design_like(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    return bool(value.get("name")) or isinstance(value.get("children"), list)


def _try_load(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _closers(stack: List[str]) -> str:
    return "".join("}" if opener == "{" else "]" for opener in reversed(stack))


def _complete_value(frames: List[List[str]]) -> None:
    if frames:
        frames[-1][1] = "after"


def repair_truncated_json(text: str) -> Optional[str]:
    """Close a JSON object that was cut off mid-stream.

    Scans once from the first '{', keeping a stack of open containers and
    what each one expects next. The last position where every open value was
    complete is remembered; a truncation inside a key, after a colon, or in a
    partial literal rolls back to it. A value string open at end of text is
    closed and kept. Open containers are closed innermost first.

    Returns the repaired text, or None when there is nothing to repair from.
    """
    start = text.find("{")
    if start == -1:
        return None
    text = text[start:]
    n = len(text)

    # Each frame is [opener, expectation]; objects cycle key → colon → value → after,
    # arrays cycle value → after.
    frames: List[List[str]] = []
    safe_cut: Optional[Tuple[int, List[str]]] = None
    i = 0

    def mark_safe(pos: int) -> None:
        nonlocal safe_cut
        safe_cut = (pos, [f[0] for f in frames])

    while i < n:
        ch = text[i]

        if ch in " \t\r\n":
            i += 1
            continue

        if ch == '"':
            is_key = bool(frames) and frames[-1][0] == "{" and frames[-1][1] == "key"
            j = i + 1
            closed = False
            while j < n:
                c = text[j]
                if c == "\\":
                    j += 2
                    continue
                if c == '"':
                    closed = True
                    break
                j += 1
            if not closed:
                if is_key:
                    break
                partial = _PARTIAL_UNICODE_RE.sub("", text[i + 1:])
                trailing = len(partial) - len(partial.rstrip("\\"))
                if trailing % 2 == 1:
                    partial = partial[:-1]
                return text[:i + 1] + partial + '"' + _closers([f[0] for f in frames])
            i = j + 1
            if is_key:
                frames[-1][1] = "colon"
            else:
                _complete_value(frames)
                mark_safe(i)
            continue

        if ch in "{[":
            frames.append([ch, "key" if ch == "{" else "value"])
            i += 1
            mark_safe(i)
            continue

        if ch in "}]":
            if frames:
                frames.pop()
            i += 1
            if not frames:
                # Root closed; anything after it is not ours
                return text[:i]
            _complete_value(frames)
            mark_safe(i)
            continue

        if ch == ",":
            if frames:
                frames[-1][1] = "key" if frames[-1][0] == "{" else "value"
            i += 1
            continue

        if ch == ":":
            if frames:
                frames[-1][1] = "value"
            i += 1
            continue

        # Number or literal
        j = i
        while j < n and text[j] not in _TOKEN_STOP:
            j += 1
        token = text[i:j]
        if j >= n and not (_NUMBER_RE.match(token) or token in _LITERALS):
            break
        i = j
        _complete_value(frames)
        mark_safe(i)

    if safe_cut is None:
        return None
    cut, stack = safe_cut
    return text[:cut] + _closers(stack)


def _to_document(data: dict, raw_text: str) -> DesignDocument:
    try:
        return DesignDocument.model_validate(data)
    except ValidationError as e:
        logger.warning(f"⚠️ Parsed JSON does not match the design schema: {e.error_count()} error(s)")
        logger.debug(f"Schema errors: {e}")
        raise ParseError(raw_text=raw_text) from e


def parse_design_json(raw_text: str) -> DesignDocument:
    """Parse model output into a DesignDocument, repairing truncation if needed.

    Raises ParseError when neither the strict nor the repaired text yields an
    object with a name or a children list.
    """
    candidate = extract_json_text(raw_text)
    data = _try_load(candidate)
    if _is_design_like(data):
        return _to_document(data, raw_text)

    repaired = repair_truncated_json(_strip_code_fence(raw_text or ""))
    if repaired is not None:
        logger.info(f"🩹 Attempting truncation repair ({len(raw_text or '')} chars in, {len(repaired)} chars out)")
        data = _try_load(repaired)
        if _is_design_like(data):
            logger.info("🩹 Repaired truncated design JSON")
            return _to_document(data, raw_text)

    logger.error("❌ Failed to parse design JSON after repair")
    raise ParseError(raw_text=raw_text or "")
