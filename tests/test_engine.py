"""
Attack engine tests.

All traffic goes to in-process fake dispatchers; nothing touches the network.
"""

import asyncio
import time

import pytest

from conftest import RecordingDispatcher, make_session
from intruder import engine as engine_module
from intruder.engine import (
    AttackEngine,
    AttackValidationError,
    plan_rounds,
    progress_of,
    total_requests,
    validate,
)
from models.attack import AttackOptions, PayloadSet, RequestTemplate


def _run(session, dispatcher, **kw):
    return asyncio.run(AttackEngine(dispatcher).run(session, **kw))


# =============================================================================
# PLANNING / VALIDATION
# =============================================================================

class TestPlanning:

    def test_total_requests(self):
        assert total_requests("sniper", 3, 4) == 12
        assert total_requests("battering_ram", 3, 4) == 4

    def test_sniper_plan_orders_positions_by_rank(self):
        session = make_session(payloads=["a", "b"])
        # list order differs from scan order
        session.positions.reverse()
        assert list(plan_rounds(session, ["a", "b"])) == [(0, "a"), (0, "b"), (1, "a"), (1, "b")]

    def test_battering_ram_plan(self):
        session = make_session(mode="battering_ram")
        assert list(plan_rounds(session, ["a", "b"])) == [(-1, "a"), (-1, "b")]

    def test_progress_rounding(self):
        assert progress_of(1, 3).percentage == 33
        assert progress_of(2, 3).percentage == 67
        assert progress_of(1, 8).percentage == 13
        assert progress_of(5, 8).percentage == 63
        assert progress_of(1, 200).percentage == 1
        assert progress_of(0, 0).percentage == 0

    def test_validate_returns_active_payloads(self):
        session = make_session(payloads=["", "  ", "x"])
        assert validate(session) == ["x"]


class TestValidation:

    def test_no_positions(self, recording_dispatcher):
        session = make_session(url="https://t.test/", headers="X-A: 1")
        assert session.positions == []
        with pytest.raises(AttackValidationError, match="position"):
            _run(session, recording_dispatcher)
        assert recording_dispatcher.requests == []

    def test_no_payloads(self, recording_dispatcher):
        session = make_session(payloads=[])
        with pytest.raises(AttackValidationError):
            _run(session, recording_dispatcher)
        assert recording_dispatcher.requests == []

    def test_only_blank_payloads(self, recording_dispatcher):
        session = make_session(payloads=["", "   ", "\t"])
        with pytest.raises(AttackValidationError, match="empty"):
            _run(session, recording_dispatcher)
        assert recording_dispatcher.requests == []

    def test_marker_count_drift(self, recording_dispatcher):
        session = make_session()
        session.template = session.template.model_copy(update={"body": "typed=#marker#"})
        with pytest.raises(AttackValidationError, match="marker"):
            _run(session, recording_dispatcher)
        assert recording_dispatcher.requests == []

    def test_previous_results_survive_failed_validation(self, recording_dispatcher):
        session = make_session()
        _run(session, recording_dispatcher)
        session.payloads = PayloadSet(items=[" "])
        with pytest.raises(AttackValidationError):
            _run(session, recording_dispatcher)
        assert len(session.results) == 6


# =============================================================================
# SNIPER / BATTERING RAM
# =============================================================================

class TestSniper:

    def test_positions_times_payloads_in_order(self, recording_dispatcher):
        session = make_session(payloads=["a", "b", "c"])
        summary = _run(session, recording_dispatcher)

        assert summary.total == summary.sent == 6
        assert summary.failed == 0
        assert not summary.stopped
        assert [r.sequence_id for r in session.results] == [1, 2, 3, 4, 5, 6]
        assert [(r.position_index, r.payload) for r in session.results] == [
            (0, "a"), (0, "b"), (0, "c"), (1, "a"), (1, "b"), (1, "c"),
        ]

        sent = recording_dispatcher.requests
        assert [r.url.rsplit("=", 1)[1] for r in sent] == ["a", "b", "c", "1", "1", "1"]
        assert [r.headers["X-Role"] for r in sent] == ["user", "user", "user", "a", "b", "c"]

    def test_non_target_markers_render_original_text(self, recording_dispatcher):
        session = make_session(
            url="https://t.test/#v1#/#v2#",
            headers="X-A: #h#",
            body="q=#b#",
            payloads=["P"],
        )
        _run(session, recording_dispatcher)
        rendered = [
            (r.url, r.headers["X-A"], r.body) for r in recording_dispatcher.requests
        ]
        assert rendered == [
            ("https://t.test/P/v2", "h", "q=b"),
            ("https://t.test/v1/P", "h", "q=b"),
            ("https://t.test/v1/v2", "P", "q=b"),
            ("https://t.test/v1/v2", "h", "q=P"),
        ]

    def test_blank_payloads_are_skipped(self, recording_dispatcher):
        session = make_session(payloads=["", "  ", "x"])
        summary = _run(session, recording_dispatcher)
        assert summary.total == 2
        assert [r.payload for r in session.results] == ["x", "x"]
        # stored set keeps its blanks
        assert session.payloads.items == ["", "  ", "x"]

    def test_result_texts(self, recording_dispatcher):
        session = make_session(payloads=["zz"])
        _run(session, recording_dispatcher)
        first = session.results[0]
        assert first.status_code == 200
        assert first.full_request.startswith("GET https://target.test/api/items?id=zz HTTP/1.1\n")
        assert first.full_request.endswith("X-Role: user\n\n")
        assert first.full_response == (
            "HTTP/1.1 200 OK\ncontent-type: text/plain\n\necho https://target.test/api/items?id=zz"
        )
        assert first.body_length == len("echo https://target.test/api/items?id=zz")
        # timing comes from the dispatcher
        assert first.elapsed_ms == 1

    def test_threads_option_does_not_change_order(self, recording_dispatcher):
        session = make_session(payloads=["a", "b"])
        session.options = AttackOptions(threads=8)
        _run(session, recording_dispatcher)
        assert [r.payload for r in session.results] == ["a", "b", "a", "b"]


class TestBatteringRam:

    def test_one_request_per_payload(self, recording_dispatcher):
        session = make_session(payloads=["a", "b", "c"], mode="battering_ram")
        summary = _run(session, recording_dispatcher)
        assert summary.total == 3
        assert [r.payload for r in session.results] == ["a", "b", "c"]
        for req, payload in zip(recording_dispatcher.requests, "abc"):
            assert req.url.endswith(f"id={payload}")
            assert req.headers["X-Role"] == payload
        assert all(r.position_index == -1 for r in session.results)

    def test_hyphenated_mode_accepted(self, recording_dispatcher):
        session = make_session(mode="battering-ram")
        assert session.mode == "battering_ram"
        assert _run(session, recording_dispatcher).total == 3


# =============================================================================
# FAILURE ISOLATION / HEADERS
# =============================================================================

class TestFailures:

    def test_every_request_failing_still_yields_full_results(self, failing_dispatcher):
        session = make_session(payloads=["a", "b"])
        summary = _run(session, failing_dispatcher)
        assert failing_dispatcher.calls == 4
        assert summary.sent == 4
        assert summary.failed == 4
        for r in session.results:
            assert r.status_code == 0
            assert r.body_length == 0
            assert r.full_response == "Error: connection refused"
            assert r.error == "connection refused"

    def test_failed_request_text_contains_payload(self, failing_dispatcher):
        session = make_session(payloads=["evil"], mode="battering_ram")
        _run(session, failing_dispatcher)
        assert "id=evil" in session.results[0].full_request
        assert "X-Role: evil" in session.results[0].full_request

    def test_one_failure_does_not_abort_run(self):
        dispatcher = RecordingDispatcher(fail_on={"boom"})
        session = make_session(payloads=["ok1", "boom", "ok2"], mode="battering_ram")
        summary = _run(session, dispatcher)
        assert [r.status_code for r in session.results] == [200, 0, 200]
        assert summary.failed == 1

    def test_content_length_never_forwarded(self, recording_dispatcher):
        session = make_session(
            url="https://t.test/",
            headers="Content-Length: 5\ncontent-length: 7\nCoNtEnT-LeNgTh: 9\nX-Role: #user#",
            body="a=1",
        )
        _run(session, recording_dispatcher)
        for req in recording_dispatcher.requests:
            assert not any(k.lower() == "content-length" for k in req.headers)
            assert req.body == "a=1"


# =============================================================================
# PROGRESS / CONTROL / PACING
# =============================================================================

class TestRunControl:

    def test_progress_after_every_request(self, failing_dispatcher):
        session = make_session(payloads=["a", "b", "c"], mode="battering_ram")
        seen = []

        async def on_progress(progress):
            seen.append((progress.current, progress.total, progress.percentage))

        _run(session, failing_dispatcher, on_progress=on_progress)
        assert seen == [(1, 3, 33), (2, 3, 67), (3, 3, 100)]
        assert session.progress.current == 3

    def test_on_result_callback(self, recording_dispatcher):
        session = make_session(payloads=["a"])
        calls = []

        async def on_result(result, idx, total):
            calls.append((result.sequence_id, idx, total))

        _run(session, recording_dispatcher, on_result=on_result)
        assert calls == [(1, 1, 2), (2, 2, 2)]

    def test_stop_takes_effect_before_next_request(self, recording_dispatcher):
        session = make_session(payloads=["a", "b", "c"])
        control = {"signal": "run"}

        async def on_result(result, idx, total):
            if idx == 2:
                control["signal"] = "stop"

        summary = _run(session, recording_dispatcher, control=control, on_result=on_result)
        assert summary.sent == 2
        assert summary.stopped
        assert len(recording_dispatcher.requests) == 2

    def test_pause_then_resume(self, recording_dispatcher, monkeypatch):
        monkeypatch.setattr(engine_module, "ATTACK_PAUSE_POLL", 0.001)
        session = make_session(payloads=["a"])
        control = {"signal": "pause"}

        async def scenario():
            task = asyncio.create_task(AttackEngine(recording_dispatcher).run(session, control))
            await asyncio.sleep(0.02)
            assert recording_dispatcher.requests == []
            control["signal"] = "run"
            return await task

        summary = asyncio.run(scenario())
        assert summary.sent == 2

    def test_delay_between_requests_only(self):
        stamps = []

        class StampingDispatcher(RecordingDispatcher):
            async def send(self, request):
                stamps.append(time.monotonic())
                return await super().send(request)

        session = make_session(payloads=["a", "b", "c"], mode="battering_ram")
        session.options = AttackOptions(delay_ms=20)
        started = time.monotonic()
        _run(session, StampingDispatcher())

        assert len(stamps) == 3
        assert stamps[0] - started < 0.015
        assert all(later - earlier >= 0.015 for earlier, later in zip(stamps, stamps[1:]))

    def test_rerun_replaces_results(self, recording_dispatcher):
        session = make_session(payloads=["a", "b"])
        _run(session, recording_dispatcher)
        _run(session, recording_dispatcher)
        assert len(session.results) == 4
        assert [r.sequence_id for r in session.results] == [1, 2, 3, 4]

    def test_stream_does_not_touch_session_results(self, recording_dispatcher):
        session = make_session(payloads=["a"])

        async def collect():
            return [r async for r in AttackEngine(recording_dispatcher).stream(session, ["a"])]

        streamed = asyncio.run(collect())
        assert len(streamed) == 2
        assert session.results == []


def test_template_without_headers_or_body(recording_dispatcher):
    session = make_session(url="https://t.test/#x#", headers="", body="")
    session.template = RequestTemplate(method="DELETE", url=session.template.url, headers="", body="")
    _run(session, recording_dispatcher)
    assert [r.url for r in recording_dispatcher.requests] == [
        "https://t.test/a", "https://t.test/b", "https://t.test/c",
    ]
    assert all(r.method == "DELETE" and r.headers == {} for r in recording_dispatcher.requests)
