from typing import NamedTuple

from intruder.markers import MARKER_RE
from models.attack import MARKER_FIELDS, RequestTemplate

# Recomputed by the transport for every round
_STRIP_HEADERS = frozenset({"content-length"})


class RoundText(NamedTuple):
    """One fully substituted request, still as raw editor text."""
    url: str
    headers: str
    body: str


def build_round_text(
    template: RequestTemplate,
    target_index: int,
    payload: str,
    mode: str = "sniper",
) -> RoundText:
    """Rewrite every marker for one round.

    Markers are counted across url, headers and body as one stream.
    Sniper puts *payload* in the marker whose count equals *target_index*
    and unwraps the rest; battering ram puts *payload* everywhere.
    The template itself is left untouched.
    """
    counter = 0

    def _replace(match) -> str:
        nonlocal counter
        index = counter
        counter += 1
        if mode == "battering_ram" or index == target_index:
            return payload
        return match.group(1)

    # A function replacement keeps backslashes in payloads literal
    rendered = {
        field: MARKER_RE.sub(_replace, getattr(template, field) or "")
        for field in MARKER_FIELDS
    }
    return RoundText(**rendered)


def parse_header_block(text: str) -> dict[str, str]:
    """Parse ``Key: Value`` lines into a dict, dropping Content-Length.

    Only the first colon splits, so values like URLs survive.  Lines with
    no colon or an empty key are ignored.
    """
    headers: dict[str, str] = {}
    for line in (text or "").split("\n"):
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        if key.lower() in _STRIP_HEADERS:
            continue
        headers[key] = value.strip()
    return headers


def render_request_text(method: str, round_text: RoundText) -> str:
    return f"{method} {round_text.url} HTTP/1.1\n{round_text.headers}\n\n{round_text.body}"


def render_response_text(status_code: int, status_message: str, headers: dict, body: str) -> str:
    header_lines = "\n".join(f"{k}: {v}" for k, v in (headers or {}).items())
    return f"HTTP/1.1 {status_code} {status_message}\n{header_lines}\n\n{body}"
