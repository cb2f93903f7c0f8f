"""
Payload position markers.

A position lives in the template text itself as ``#original#``.  Markers
are numbered by one scan over url → headers → body, so the same template
always yields the same numbering no matter how positions were added.
"""

import logging
import re
from typing import Iterator, NamedTuple

from models.attack import MARKER_FIELDS, AttackSession, Position, RequestTemplate

log = logging.getLogger(__name__)

DELIMITER = "#"
MARKER_RE = re.compile(r"#([^#]+)#")


class MarkerError(ValueError):
    """Raised when a marker edit would break the template/position mapping."""


class MarkerSpan(NamedTuple):
    index: int      # global rank across all fields
    field: str
    start: int      # offsets of the delimited marker within its field
    end: int
    content: str


def iter_markers(template: RequestTemplate) -> Iterator[MarkerSpan]:
    index = 0
    for field in MARKER_FIELDS:
        for m in MARKER_RE.finditer(getattr(template, field) or ""):
            yield MarkerSpan(index, field, m.start(), m.end(), m.group(1))
            index += 1


def count_markers(template: RequestTemplate) -> int:
    return sum(1 for _ in iter_markers(template))


def mark_position(
    template: RequestTemplate,
    field: str,
    start: int,
    end: int,
    position_id: int,
) -> tuple[RequestTemplate, Position]:
    """Wrap ``field[start:end]`` in delimiters and describe the new position.

    The returned position's ``sequence_index`` is the marker's rank in the
    url → headers → body scan of the updated template.
    """
    if field not in MARKER_FIELDS:
        raise MarkerError(f"Unknown field {field!r}, expected one of {', '.join(MARKER_FIELDS)}")
    if start > end:
        start, end = end, start
    text = getattr(template, field) or ""
    if start == end:
        raise MarkerError("Selection is empty")
    if start < 0 or end > len(text):
        raise MarkerError(f"Selection [{start}, {end}) is outside the {field} ({len(text)} chars)")

    selected = text[start:end]
    if DELIMITER in selected:
        raise MarkerError(f"Selection may not contain the marker delimiter {DELIMITER!r}")
    for span in iter_markers(template):
        if span.field == field and start < span.end and end > span.start:
            raise MarkerError("Selection overlaps an existing position")

    before = count_markers(template)
    updated = template.model_copy(update={
        field: f"{text[:start]}{DELIMITER}{selected}{DELIMITER}{text[end:]}",
    })

    # A literal '#' next to the selection can pair up with the new delimiters
    rank = None
    for span in iter_markers(updated):
        if span.field == field and span.start == start and span.content == selected:
            rank = span.index
            break
    if rank is None or count_markers(updated) != before + 1:
        raise MarkerError(
            f"Selection collides with a literal {DELIMITER!r} in the {field}; "
            "remove it before marking this text"
        )

    position = Position(id=position_id, field=field, original_value=selected, sequence_index=rank)
    return updated, position


def unmark_position(template: RequestTemplate, position: Position) -> RequestTemplate:
    """Remove the delimiters of *position*'s marker, leaving its text in place."""
    candidates = [
        span for span in iter_markers(template)
        if span.field == position.field and span.content == position.original_value
    ]
    if not candidates:
        log.warning(
            "no marker #%s# found in %s for position %d",
            position.original_value, position.field, position.id,
        )
        return template

    # Equal text in one field is ambiguous; prefer the marker at the
    # position's own rank, else the nearest one (first on ties)
    chosen = min(candidates, key=lambda s: abs(s.index - position.sequence_index))
    if len(candidates) > 1 and chosen.index != position.sequence_index:
        log.warning(
            "ambiguous restore for position %d: %d markers read #%s#, picked rank %d",
            position.id, len(candidates), position.original_value, chosen.index,
        )

    text = getattr(template, position.field)
    restored = text[:chosen.start] + chosen.content + text[chosen.end:]
    return template.model_copy(update={position.field: restored})


def clear_all_positions(template: RequestTemplate) -> RequestTemplate:
    """Strip every delimiter from headers and body; unwrap markers in the url.

    Headers and body lose literal ``#`` characters too.  The url keeps
    fragments that are not markers.
    """
    return template.model_copy(update={
        "url": MARKER_RE.sub(r"\1", template.url or ""),
        "headers": (template.headers or "").replace(DELIMITER, ""),
        "body": (template.body or "").replace(DELIMITER, ""),
    })


def check_positions(template: RequestTemplate, positions: list[Position]) -> None:
    """Raise if the template and position list have drifted apart."""
    markers = count_markers(template)
    if markers != len(positions):
        raise MarkerError(
            f"Template contains {markers} marker(s) but {len(positions)} position(s) are defined; "
            "clear the positions and mark them again"
        )


# ── Session helpers ───────────────────────────────────────────────


def _renumber(positions: list[Position]) -> None:
    for rank, pos in enumerate(sorted(positions, key=lambda p: p.sequence_index)):
        pos.sequence_index = rank


def add_position(session: AttackSession, field: str, start: int, end: int) -> Position:
    template, position = mark_position(
        session.template, field, start, end, session.next_position_id,
    )
    for existing in session.positions:
        if existing.sequence_index >= position.sequence_index:
            existing.sequence_index += 1
    session.template = template
    session.positions.append(position)
    session.next_position_id += 1
    session.touch()
    log.info("position %d added in %s at rank %d", position.id, field, position.sequence_index)
    return position


def remove_position(session: AttackSession, position_id: int) -> Position:
    position = next((p for p in session.positions if p.id == position_id), None)
    if position is None:
        raise KeyError(position_id)
    session.template = unmark_position(session.template, position)
    session.positions = [p for p in session.positions if p.id != position_id]
    _renumber(session.positions)
    session.touch()
    return position


def clear_positions(session: AttackSession) -> None:
    session.template = clear_all_positions(session.template)
    session.positions = []
    session.touch()
