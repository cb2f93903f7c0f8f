"""
Attack execution engine.

Drives the rounds of one attack through a :class:`RequestDispatcher`,
strictly one at a time:

  sniper        : for each position (scan order), for each payload
  battering_ram : for each payload, every position at once

A failed request becomes a ``status_code == 0`` result and the run moves
on.  The run is steered by a mutable control dict (``{"signal": "run" |
"pause" | "stop"}``) checked before every round, so a stop takes effect
before the next request goes out.
"""

import asyncio
import logging
import math
import time
from typing import AsyncIterator, Awaitable, Callable, Iterator, Optional

from pydantic import BaseModel

from config import ATTACK_PAUSE_POLL
from intruder.dispatcher import DispatchRequest, RequestDispatcher
from intruder.markers import MarkerError, check_positions
from intruder.payloads import active_payloads
from intruder.results import ResultAggregator
from intruder.substitution import (
    build_round_text,
    parse_header_block,
    render_request_text,
    render_response_text,
)
from models.attack import AttackProgress, AttackResult, AttackSession

log = logging.getLogger(__name__)

ResultCallback = Callable[[AttackResult, int, int], Awaitable[None]]
ProgressCallback = Callable[[AttackProgress], Awaitable[None]]


class AttackValidationError(ValueError):
    """The session cannot be attacked as configured; nothing was sent."""


class AttackSummary(BaseModel):
    total: int = 0
    sent: int = 0
    failed: int = 0
    stopped: bool = False


def total_requests(mode: str, position_count: int, payload_count: int) -> int:
    if mode == "battering_ram":
        return payload_count
    return position_count * payload_count


def validate(session: AttackSession) -> list[str]:
    """Check *session* is attackable and return the payloads that will be sent."""
    if not session.positions:
        raise AttackValidationError("Add at least one payload position")
    if not session.payloads.items:
        raise AttackValidationError("Add payloads before starting the attack")
    payloads = active_payloads(session.payloads)
    if not payloads:
        raise AttackValidationError("All payloads are empty. Add at least one non-blank payload")
    try:
        check_positions(session.template, session.positions)
    except MarkerError as e:
        raise AttackValidationError(str(e)) from e
    return payloads


def plan_rounds(session: AttackSession, payloads: list[str]) -> Iterator[tuple[int, str]]:
    """Yield ``(target_index, payload)`` in dispatch order."""
    if session.mode == "battering_ram":
        for payload in payloads:
            yield -1, payload
        return
    for position in sorted(session.positions, key=lambda p: p.sequence_index):
        for payload in payloads:
            yield position.sequence_index, payload


def progress_of(current: int, total: int) -> AttackProgress:
    # halves round up
    percentage = math.floor(current / total * 100 + 0.5) if total else 0
    return AttackProgress(current=current, total=total, percentage=percentage)


async def _should_stop(control: dict) -> bool:
    """Block while paused; True once a stop has been requested."""
    while control.get("signal") == "pause":
        await asyncio.sleep(ATTACK_PAUSE_POLL)
    return control.get("signal") == "stop"


class AttackEngine:

    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self.dispatcher = dispatcher

    async def execute_round(
        self,
        session: AttackSession,
        sequence_id: int,
        target_index: int,
        payload: str,
    ) -> AttackResult:
        """Build, send and record a single round. Never raises for transport errors."""
        template = session.template
        round_text = build_round_text(template, target_index, payload, session.mode)
        full_request = render_request_text(template.method, round_text)
        request = DispatchRequest(
            method=template.method,
            url=round_text.url,
            headers=parse_header_block(round_text.headers),
            body=round_text.body,
        )

        start = time.time()
        try:
            resp = await self.dispatcher.send(request)
        except Exception as e:
            message = str(e) or type(e).__name__
            log.debug("request %d failed for payload %r: %s", sequence_id, payload, message)
            return AttackResult(
                sequence_id=sequence_id,
                payload=payload,
                position_index=target_index,
                status_code=0,
                body_length=0,
                elapsed_ms=round((time.time() - start) * 1000),
                full_request=full_request,
                full_response=f"Error: {message}",
                error=message,
            )

        return AttackResult(
            sequence_id=sequence_id,
            payload=payload,
            position_index=target_index,
            status_code=resp.status_code,
            body_length=len(resp.body or ""),
            elapsed_ms=resp.duration_ms,
            full_request=full_request,
            full_response=render_response_text(
                resp.status_code, resp.status_message, resp.headers, resp.body,
            ),
        )

    async def stream(
        self,
        session: AttackSession,
        payloads: list[str],
        control: dict | None = None,
    ) -> AsyncIterator[AttackResult]:
        """Yield one result per round, in dispatch order."""
        ctrl = control if control is not None else {"signal": "run"}
        delay = session.options.delay_ms / 1000
        total = total_requests(session.mode, len(session.positions), len(payloads))

        sequence_id = 0
        for target_index, payload in plan_rounds(session, payloads):
            if await _should_stop(ctrl):
                log.info("attack on %s stopped by user at %d/%d", session.id, sequence_id, total)
                return
            if sequence_id > 0 and delay > 0:
                await asyncio.sleep(delay)
                if await _should_stop(ctrl):
                    log.info("attack on %s stopped by user at %d/%d", session.id, sequence_id, total)
                    return
            sequence_id += 1
            yield await self.execute_round(session, sequence_id, target_index, payload)

    async def run(
        self,
        session: AttackSession,
        control: dict | None = None,
        on_result: Optional[ResultCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AttackSummary:
        """Run a full attack, rebuilding ``session.results`` and ``session.progress``.

        Raises :class:`AttackValidationError` before anything is sent when
        the session has no positions or no usable payloads.
        """
        payloads = validate(session)
        total = total_requests(session.mode, len(session.positions), len(payloads))
        if session.options.threads > 1:
            log.debug("threads=%d ignored, rounds are dispatched sequentially", session.options.threads)

        results = ResultAggregator(session.results)
        results.clear()
        session.progress = progress_of(0, total)
        log.info(
            "attack on %s started: %s, %d position(s) x %d payload(s) = %d requests",
            session.id, session.mode, len(session.positions), len(payloads), total,
        )

        async for result in self.stream(session, payloads, control):
            results.append(result)
            session.progress = progress_of(len(results), total)
            if on_result:
                await on_result(result, len(results), total)
            if on_progress:
                await on_progress(session.progress)

        summary = AttackSummary(
            total=total,
            sent=len(results),
            failed=len(results.failures()),
            stopped=len(results) < total,
        )
        session.touch()
        log.info(
            "attack on %s finished: %d/%d requests sent, %d failed%s",
            session.id, summary.sent, summary.total, summary.failed,
            " (stopped)" if summary.stopped else "",
        )
        return summary
