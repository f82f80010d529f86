"""
Robust-parse adapter for reasoning-service output.

The service is asked for one JSON object but routinely wraps it in prose or
a ```json fence. parse_record() tries, in order: the whole text, the first
fenced block, the outermost {...} span, the same span with trailing commas
and smart quotes cleaned up, then each brace-balanced object in turn (for
prose with a stray brace or more than one object). The first object carrying
every required field wins. Callers get a ParseResult and never see a json
exception.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, Optional

from riskscope.errors import ReasoningServiceParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.I)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_MAX_BALANCED_SCANS = 20


@dataclass
class ParseResult:
    record: Optional[Dict[str, Any]] = None
    error: Optional[ReasoningServiceParseError] = None
    strategy: str = ""
    missing: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.record is not None

    def unwrap(self) -> Dict[str, Any]:
        if self.record is None:
            raise self.error or ReasoningServiceParseError("no record")
        return self.record


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def _cleanup(text: str) -> str:
    text = text.replace("“", '"').replace("”", '"').replace("’", "'")
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    return re.sub(r"\s+", " ", text).strip()


def _balanced_objects(text: str) -> Iterator[str]:
    """Yield each brace-balanced {...} substring, skipping braces inside JSON strings."""
    starts = [i for i, ch in enumerate(text) if ch == "{"][:_MAX_BALANCED_SCANS]
    for start in starts:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    yield text[start:i + 1]
                    break


def parse_record(text: str, required: Iterable[str] = ()) -> ParseResult:
    """Extract one JSON object from free-form text."""
    if not text or not text.strip():
        return ParseResult(error=ReasoningServiceParseError("empty response", text or ""))

    candidates = [("direct", text.strip())]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(("fence", fence.group(1).strip()))
    span = _OBJECT_RE.search(text)
    if span:
        candidates.append(("span", span.group(0)))
        candidates.append(("cleaned", _cleanup(span.group(0))))
        candidates.extend(("balanced", obj) for obj in _balanced_objects(text))

    required = list(required)
    incomplete: Optional[ParseResult] = None
    for strategy, candidate in candidates:
        record = _loads_object(candidate)
        if record is None:
            continue
        missing = [k for k in required if k not in record]
        if not missing:
            return ParseResult(record=record, strategy=strategy)
        if incomplete is None:
            incomplete = ParseResult(
                error=ReasoningServiceParseError(f"record missing fields: {', '.join(missing)}", text),
                strategy=strategy,
                missing=missing,
            )

    if incomplete is not None:
        return incomplete
    return ParseResult(error=ReasoningServiceParseError("no JSON object found in response", text))
