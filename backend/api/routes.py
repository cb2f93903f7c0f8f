import asyncio
import logging
import uuid

from fastapi import APIRouter, BackgroundTasks
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config import DEFAULT_SESSION_NAME
from intruder.dispatcher import HttpxDispatcher
from intruder.engine import AttackEngine, AttackValidationError, total_requests, validate
from intruder.markers import MarkerError, add_position, clear_positions, remove_position
from intruder.payloads import (
    builtin_catalog,
    builtin_payload_set,
    generate_list,
    generate_numeric_range,
    parse_list_text,
)
from models.attack import AttackOptions, AttackSession, NumericRangeConfig, RequestTemplate
from storage.db import (
    clear_attack_results,
    delete_session,
    export_session,
    get_attack_result,
    get_attack_results,
    get_session,
    list_sessions,
    save_attack_result,
    save_session,
)
from api.websocket import manager

log = logging.getLogger(__name__)
router = APIRouter()

# Builds the dispatcher for each run; swapped out in tests
_dispatcher_factory = HttpxDispatcher

# Per-session attack bookkeeping: control signal, status, run lock
_attacks: dict[str, dict] = {}


def _idle_status() -> dict:
    return {
        "running": False,
        "queued": False,
        "error": None,
        "attack_id": "",
        "current": 0,
        "total": 0,
        "percentage": 0,
        "summary": None,
    }


def _attack_state(session_id: str) -> dict:
    state = _attacks.get(session_id)
    if state is None:
        state = {
            "control": {"signal": "run"},
            "status": _idle_status(),
            "lock": asyncio.Lock(),
        }
        _attacks[session_id] = state
    return state


def set_attack_signal(session_id: str, signal: str) -> bool:
    """Set the control signal of a session's attack ("run" | "pause" | "stop")."""
    state = _attacks.get(session_id)
    if state is None or signal not in ("run", "pause", "stop"):
        return False
    state["control"]["signal"] = signal
    log.info("attack on %s signalled %s", session_id, signal)
    return True


def stop_all_attacks() -> None:
    for session_id in list(_attacks):
        set_attack_signal(session_id, "stop")


def _is_running(session_id: str) -> bool:
    state = _attacks.get(session_id)
    return bool(state and state["status"]["running"])


def _not_found(session_id: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"Session {session_id} not found"})


def _busy(session_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": f"An attack is running on session {session_id}; stop it first"},
    )


def _headers_text(headers) -> str:
    if isinstance(headers, dict):
        return "\n".join(f"{k}: {v}" for k, v in headers.items())
    return headers or ""


# ──────────────────────────── Health ────────────────────────────────


@router.get("/health")
async def health():
    return {"status": "ok"}


# ──────────────────────────── Sessions ────────────────────────────


@router.get("/intruder/sessions")
async def sessions_list():
    return await list_sessions()


@router.post("/intruder/sessions")
async def sessions_create(data: dict | None = None):
    """Open a new attack tab, optionally seeded with a captured request."""
    data = data or {}
    name = (data.get("name") or "").strip()
    if not name:
        name = f"{DEFAULT_SESSION_NAME} {len(await list_sessions()) + 1}"

    template = RequestTemplate()
    req = data.get("request")
    if req:
        template = RequestTemplate(
            method=req.get("method") or "GET",
            url=req.get("url") or "",
            headers=_headers_text(req.get("headers")),
            body=req.get("body") or "",
        )

    session = AttackSession(id=uuid.uuid4().hex[:8], name=name, template=template)
    await save_session(session)
    log.info("session %s created (%s)", session.id, name)
    return session.model_dump(mode="json", by_alias=True)


@router.get("/intruder/sessions/{session_id}")
async def sessions_get(session_id: str):
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    return session.model_dump(mode="json", by_alias=True)


@router.put("/intruder/sessions/{session_id}")
async def sessions_update(session_id: str, data: dict):
    """Edit name, template text, attack mode or options."""
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    if _is_running(session_id):
        return _busy(session_id)

    try:
        if "name" in data:
            session.name = (data.get("name") or "").strip() or session.name
        if "template" in data:
            merged = {**session.template.model_dump(), **(data.get("template") or {})}
            merged["headers"] = _headers_text(merged.get("headers"))
            session.template = RequestTemplate(**merged)
        if "mode" in data:
            session = AttackSession.model_validate({**session.model_dump(), "mode": data["mode"]})
        if "options" in data:
            session.options = AttackOptions(**{**session.options.model_dump(), **(data.get("options") or {})})
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    session.touch()
    await save_session(session)
    return session.model_dump(mode="json", by_alias=True)


@router.delete("/intruder/sessions/{session_id}")
async def sessions_delete(session_id: str):
    state = _attacks.get(session_id)
    if state is None:
        await delete_session(session_id)
        return {"status": "deleted"}

    if _is_running(session_id):
        set_attack_signal(session_id, "stop")
    # Wait for the run to drain so it cannot write the session back
    async with state["lock"]:
        await delete_session(session_id)
        _attacks.pop(session_id, None)
    return {"status": "deleted"}


@router.get("/intruder/sessions/{session_id}/export")
async def sessions_export(session_id: str):
    record = await export_session(session_id)
    if record is None:
        return _not_found(session_id)
    return record


# ──────────────────────────── Positions ────────────────────────────


@router.post("/intruder/sessions/{session_id}/positions")
async def positions_add(session_id: str, data: dict):
    """Mark ``[start, end)`` of a template field as a payload position."""
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    if _is_running(session_id):
        return _busy(session_id)
    try:
        position = add_position(
            session,
            data.get("field", ""),
            int(data.get("start", 0)),
            int(data.get("end", 0)),
        )
    except (MarkerError, TypeError, ValueError) as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    await save_session(session)
    return {
        "position": position.model_dump(),
        "template": session.template.model_dump(),
        "positions": [p.model_dump() for p in session.positions],
    }


@router.delete("/intruder/sessions/{session_id}/positions/{position_id}")
async def positions_remove(session_id: str, position_id: int):
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    if _is_running(session_id):
        return _busy(session_id)
    try:
        remove_position(session, position_id)
    except KeyError:
        return JSONResponse(status_code=404, content={"error": f"Position {position_id} not found"})

    await save_session(session)
    return {
        "template": session.template.model_dump(),
        "positions": [p.model_dump() for p in session.positions],
    }


@router.delete("/intruder/sessions/{session_id}/positions")
async def positions_clear(session_id: str):
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    if _is_running(session_id):
        return _busy(session_id)
    clear_positions(session)
    await save_session(session)
    return {"template": session.template.model_dump(), "positions": []}


# ──────────────────────────── Payloads ────────────────────────────


@router.get("/intruder/payloads/builtin")
async def payloads_builtin():
    return builtin_catalog()


@router.put("/intruder/sessions/{session_id}/payloads")
async def payloads_set(session_id: str, data: dict):
    """Replace the payload set.

    Accepts ``{"builtin": name}``, ``{"kind": "numeric_range", "config": {...}}``,
    ``{"text": "..."}`` or ``{"items": [...]}``.
    """
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    if _is_running(session_id):
        return _busy(session_id)

    try:
        if data.get("builtin"):
            payload_set = builtin_payload_set(data["builtin"])
        elif data.get("kind") == "numeric_range":
            payload_set = generate_numeric_range(NumericRangeConfig(**(data.get("config") or {})))
        elif "text" in data:
            payload_set = parse_list_text(data.get("text") or "")
        else:
            payload_set = generate_list(data.get("items") or [])
    except KeyError:
        return JSONResponse(status_code=400, content={"error": f"Unknown built-in list {data.get('builtin')!r}"})
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    session.payloads = payload_set
    session.touch()
    await save_session(session)
    return {
        "payloads": payload_set.model_dump(mode="json", by_alias=True),
        "count": len(payload_set.items),
    }


# ──────────────────────────── Attack ────────────────────────────


async def _run_attack(session_id: str, attack_id: str, control: dict, status: dict) -> None:
    """Background body of one run. *control* and *status* were registered by ``attack_start``."""
    state = _attacks.get(session_id)
    if state is None:
        status.update({"running": False, "queued": False})
        return
    # Only one run per session; a superseded run drains before this one starts
    async with state["lock"]:
        status["queued"] = False
        if control["signal"] == "stop":
            log.info("attack %s on %s stopped before it started", attack_id, session_id)
            status["running"] = False
            return
        session = await get_session(session_id)
        if session is None:
            status.update({"running": False, "error": f"Session {session_id} not found"})
            return

        await clear_attack_results(session_id)
        session.results = []

        async def on_result(result, idx, total):
            await save_attack_result(session_id, result)
            await manager.emit("intruder_result", session_id, **result.model_dump())

        async def on_progress(progress):
            status.update(progress.model_dump())
            await manager.emit("intruder_progress", session_id, attack_id=attack_id, **progress.model_dump())

        try:
            async with _dispatcher_factory(follow_redirects=session.options.follow_redirects) as dispatcher:
                summary = await AttackEngine(dispatcher).run(session, control, on_result, on_progress)
            await save_session(session)
            status.update({"running": False, "summary": summary.model_dump()})
            await manager.emit("intruder_complete", session_id, attack_id=attack_id, **summary.model_dump())
        except AttackValidationError as e:
            status.update({"running": False, "error": str(e)})
        except Exception as e:
            log.error("attack %s on %s failed: %s", attack_id, session_id, e, exc_info=True)
            status.update({"running": False, "error": str(e)})


@router.post("/intruder/sessions/{session_id}/attack")
async def attack_start(session_id: str, background_tasks: BackgroundTasks):
    session = await get_session(session_id)
    if not session:
        return _not_found(session_id)
    try:
        payloads = validate(session)
    except AttackValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    state = _attack_state(session_id)
    if _is_running(session_id):
        log.info("superseding attack %s on %s", state["status"]["attack_id"], session_id)
        set_attack_signal(session_id, "stop")

    # Registered now so pause/stop sent while this run is queued reach it
    attack_id = uuid.uuid4().hex[:12]
    control = {"signal": "run"}
    status = _idle_status()
    status.update({"running": True, "queued": True, "attack_id": attack_id})
    state["control"] = control
    state["status"] = status

    background_tasks.add_task(_run_attack, session_id, attack_id, control, status)
    return {
        "status": "attack_started",
        "attack_id": attack_id,
        "mode": session.mode,
        "total": total_requests(session.mode, len(session.positions), len(payloads)),
    }


@router.get("/intruder/sessions/{session_id}/attack/status")
async def attack_status(session_id: str):
    state = _attack_state(session_id)
    return {**state["status"], "control": state["control"]["signal"]}


@router.post("/intruder/sessions/{session_id}/attack/pause")
async def attack_pause(session_id: str):
    state = _attack_state(session_id)
    if state["control"]["signal"] == "pause":
        state["control"]["signal"] = "run"
        return {"signal": "run"}
    state["control"]["signal"] = "pause"
    return {"signal": "pause"}


@router.post("/intruder/sessions/{session_id}/attack/stop")
async def attack_stop(session_id: str):
    _attack_state(session_id)["control"]["signal"] = "stop"
    return {"signal": "stop"}


# ──────────────────────────── Results ────────────────────────────


@router.get("/intruder/sessions/{session_id}/results")
async def results_list(session_id: str, limit: int = 0):
    return [r.model_dump() for r in await get_attack_results(session_id, limit or None)]


@router.get("/intruder/sessions/{session_id}/results/{sequence_id}")
async def results_get(session_id: str, sequence_id: int):
    result = await get_attack_result(session_id, sequence_id)
    if result is None:
        return JSONResponse(status_code=404, content={"error": f"Result {sequence_id} not found"})
    return result.model_dump()
