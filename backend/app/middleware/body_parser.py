"""
Lets-Go-WorkSpace Backend — Body Parsing Middleware
====================================================

What:  Parses JSON and URL-encoded request bodies before routing.
Why:   Handlers (and any middleware added later) find the decoded body on
       `request.state.body` without re-reading the stream.
How:   Streams the body chunk by chunk and stops as soon as it passes the size
       limit, then decodes according to the Content-Type media type.
       Failures raise AppError subclasses that the error stage turns into
       400/413 responses.
When:  Inside the error stage, before logging and routing. A malformed body
       is rejected even when the path has no route.

Parsing rules:
    application/json                   empty → {}, top level must be an object
                                       or array, anything else → 400
    application/x-www-form-urlencoded  bracketed keys nest: a[b]=1 → {"a": {"b": "1"}},
                                       a[]=1&a[]=2 and a[0]=1 build lists,
                                       repeated plain keys collect a list,
                                       blank values are kept
    anything else                      request.state.body = {}
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qsl

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from app.config import settings
from app.exceptions import MalformedBodyError, PayloadTooLargeError

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"

# ── Nested Form Keys ──────────────────────────────────────────────────────
# What: Limits for bracket expansion in form keys
# MAX_DEPTH: brackets beyond the fifth stay in the key as literal text
# ARRAY_LIMIT: a[21]=x is a dict key "21", not a 22-element list
MAX_DEPTH = 5
ARRAY_LIMIT = 20
BRACKET_SEGMENT = re.compile(r"\[([^\[\]]*)\]")

FormValue = Union[str, List[Any], Dict[str, Any]]


def media_type(content_type: str) -> str:
    """'application/json; charset=utf-8' → 'application/json'"""
    return content_type.split(";", 1)[0].strip().lower()


def parse_json_body(raw: bytes) -> Any:
    """
    Decode a JSON body in strict mode.

    Raises:
        MalformedBodyError: body is not UTF-8, not JSON, or its top level is a
            primitive (string, number, boolean, null).
    """
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError:
        raise MalformedBodyError("Request body is not valid UTF-8", JSON_MEDIA_TYPE)
    except json.JSONDecodeError as e:
        raise MalformedBodyError(f"Invalid JSON body: {e.msg}", JSON_MEDIA_TYPE)

    if not isinstance(parsed, (dict, list)):
        raise MalformedBodyError(
            "Invalid JSON body: top level must be an object or array",
            JSON_MEDIA_TYPE,
        )
    return parsed


def split_form_key(key: str) -> List[str]:
    """
    'room[features][]' → ['room', 'features', '']

    Keys without a bracketed segment after a non-empty name stay whole
    ('[a]', 'a[b', 'plain'). Segments past MAX_DEPTH are kept together as
    one literal segment.
    """
    first = key.find("[")
    if first <= 0:
        return [key]

    segments = [key[:first]]
    pos = first
    while len(segments) <= MAX_DEPTH:
        match = BRACKET_SEGMENT.match(key, pos)
        if not match:
            break
        segments.append(match.group(1))
        pos = match.end()

    if len(segments) == 1:
        return [key]
    if pos < len(key):
        segments.append(key[pos:])
    return segments


def _segment_key(segment: str) -> Union[str, int, None]:
    """None appends ('[]'), small ints index a list, anything else is a dict key."""
    if segment == "":
        return None
    if segment.isdigit() and int(segment) <= ARRAY_LIMIT:
        return int(segment)
    return segment


def _next_index(node: Dict[Any, Any]) -> int:
    return max((k for k in node if isinstance(k, int)), default=-1) + 1


def _merge(target: Any, source: Any) -> Any:
    """
    Merge a freshly parsed field into what was parsed so far.

    dict + dict merges key by key ('[]' keys append); anything else collects
    both values in a list, the same way a repeated plain key does.
    """
    if isinstance(target, dict) and isinstance(source, dict):
        for key, value in source.items():
            if key is None:
                key = _next_index(target)
            if key in target:
                target[key] = _merge(target[key], value)
            elif isinstance(value, dict):
                target[key] = _merge({}, value)
            else:
                target[key] = value
        return target
    if isinstance(target, list):
        target.append(source)
        return target
    return [target, source]


def _compact(node: Any) -> Any:
    """Turn dicts keyed only by list indices into lists; stringify other keys."""
    if isinstance(node, list):
        return [_compact(item) for item in node]
    if not isinstance(node, dict):
        return node
    if node and all(isinstance(k, int) for k in node):
        return [_compact(node[k]) for k in sorted(node)]
    return {str(k): _compact(v) for k, v in node.items()}


def parse_form_body(raw: bytes) -> Dict[str, FormValue]:
    """Decode an application/x-www-form-urlencoded body with nested keys."""
    try:
        pairs = parse_qsl(raw.decode("utf-8"), keep_blank_values=True)
    except UnicodeDecodeError:
        raise MalformedBodyError("Request body is not valid UTF-8", FORM_MEDIA_TYPE)

    form: Dict[Any, Any] = {}
    for key, value in pairs:
        segments = split_form_key(key)
        node: Any = value
        for segment in reversed(segments[1:]):
            node = {_segment_key(segment): node}
        _merge(form, {segments[0]: node})
    return _compact(form)


async def read_limited_body(request: Request, limit: int) -> bytes:
    """
    Read the request body, giving up on the first chunk past `limit`.

    Raises:
        PayloadTooLargeError: the body is larger than `limit` bytes.
    """
    chunks: List[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise PayloadTooLargeError(limit=limit, length=received)
        chunks.append(chunk)

    raw = b"".join(chunks)
    # Cache it the way Request.body() does, so handlers can still read it
    request._body = raw
    return raw


class BodyParserMiddleware(BaseHTTPMiddleware):
    """
    Attaches the parsed request body to `request.state.body`.

    Args:
        limit: Maximum body size in bytes (defaults to settings.body_limit)
    """

    def __init__(self, app: ASGIApp, limit: Optional[int] = None):
        super().__init__(app)
        self.limit = limit or settings.body_limit

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        kind = media_type(request.headers.get("content-type", ""))
        if kind not in (JSON_MEDIA_TYPE, FORM_MEDIA_TYPE):
            request.state.body = {}
            return await call_next(request)

        # Reject on the declared length before reading anything
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.limit:
            raise PayloadTooLargeError(limit=self.limit, length=int(declared))

        raw = await read_limited_body(request, self.limit)

        if kind == JSON_MEDIA_TYPE:
            request.state.body = parse_json_body(raw)
        else:
            request.state.body = parse_form_body(raw)

        logger.debug("Parsed %s body (%d bytes)", kind, len(raw))
        return await call_next(request)
