"""Classification of cloudflared output lines."""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict

PUBLIC_URL_RE = re.compile(
    r"https://(?!api\.)[a-zA-Z0-9-]+\."
    r"(?:trycloudflare\.com|cfargotunnel\.com|cloudflareaccess\.com)"
)

# cloudflared logs one of these once an edge connection is up
CONNECTION_READY_MARKERS = (
    "registered tunnel connection",
    "connection registered",
)

ERROR_MARKERS = (
    "address already in use",
    "invalid tunnel credentials",
    "dns record creation failed",
    "could not",
    "cannot",
    "unable",
    "refused",
    "denied",
    "fatal",
    "error",
    "fail",
)

MAX_ERROR_LENGTH = 150


class LineKind(str, Enum):
    """What a single output line tells us."""

    PUBLIC_URL = "public_url"
    READY = "ready"
    ERROR = "error"
    LOG = "log"


class OutputEvent(BaseModel):
    """Classified output line."""

    model_config = ConfigDict(frozen=True)

    kind: LineKind
    line: str
    value: str | None = None


def find_public_url(line: str) -> str | None:
    """Return the published tunnel URL contained in ``line``, if any."""
    match = PUBLIC_URL_RE.search(line)
    return match.group(0) if match else None


def is_connection_ready(line: str) -> bool:
    lowered = line.lower()
    return any(marker in lowered for marker in CONNECTION_READY_MARKERS)


def find_error(line: str) -> str | None:
    """Return a trimmed error message if ``line`` looks like a failure."""
    lowered = line.lower()
    for marker in ERROR_MARKERS:
        if marker in lowered:
            return line.strip()[:MAX_ERROR_LENGTH]
    return None


def classify_line(line: str) -> OutputEvent:
    """Classify one output line. A URL takes precedence over any marker."""
    url = find_public_url(line)
    if url is not None:
        return OutputEvent(kind=LineKind.PUBLIC_URL, line=line, value=url)
    if is_connection_ready(line):
        return OutputEvent(kind=LineKind.READY, line=line)
    error = find_error(line)
    if error is not None:
        return OutputEvent(kind=LineKind.ERROR, line=line, value=error)
    return OutputEvent(kind=LineKind.LOG, line=line)
