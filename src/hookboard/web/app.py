"""JSON API and live hook event stream."""

import asyncio
import json
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from hookboard.actors.board_manager import BoardManager
from hookboard.config import Config, get_config
from hookboard.core import boards as boards_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db
from hookboard.integrations.slack import SlackNotifier
from hookboard.system_hooks import registry


def _get_db(request: Request):
    return init_db(request.app.state.config.db_path)


def _manager(request: Request) -> BoardManager:
    return request.app.state.manager


# ── Handlers ──────────────────────────────────────────────────────────────────


async def api_list_boards(request: Request):
    db = _get_db(request)
    try:
        return JSONResponse([_board_dict(b) for b in boards_mod.list_boards(db)])
    finally:
        db.close()


async def api_board_columns(request: Request):
    board_id = request.path_params["board_id"]
    db = _get_db(request)
    try:
        if not boards_mod.get_board(db, board_id):
            return JSONResponse({"error": "Board not found"}, status_code=404)
        return JSONResponse([_column_dict(c) for c in boards_mod.list_columns(db, board_id)])
    finally:
        db.close()


async def api_board_tasks(request: Request):
    board_id = request.path_params["board_id"]
    db = _get_db(request)
    try:
        if not boards_mod.get_board(db, board_id):
            return JSONResponse({"error": "Board not found"}, status_code=404)
        return JSONResponse([_task_dict(t) for t in tasks_mod.list_tasks(db, board_id)])
    finally:
        db.close()


async def api_create_task(request: Request):
    board_id = request.path_params["board_id"]
    body = await request.json()
    if not body.get("title"):
        return JSONResponse({"error": "title is required"}, status_code=400)
    db = _get_db(request)
    try:
        task = tasks_mod.create_task(
            db,
            board_id,
            body["title"],
            column_id=body.get("column_id"),
            description=body.get("description", ""),
            worktree_path=body.get("worktree_path"),
            auto_start=bool(body.get("auto_start", False)),
            pubsub=_manager(request).pubsub,
        )
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    finally:
        db.close()
    return JSONResponse(_task_dict(task), status_code=201)


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    db = _get_db(request)
    try:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            return JSONResponse({"error": "Task not found"}, status_code=404)
        return JSONResponse(_task_dict(task))
    finally:
        db.close()


async def api_move_task(request: Request):
    task_id = request.path_params["task_id"]
    body = await request.json()
    column_id = body.get("column_id")
    if column_id is None:
        return JSONResponse({"error": "column_id is required"}, status_code=400)
    try:
        task = await run_in_threadpool(_manager(request).move, task_id, int(column_id))
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    if not task:
        return JSONResponse({"error": "Task not found"}, status_code=404)
    return JSONResponse(_task_dict(task))


async def api_stop_execution(request: Request):
    task_id = request.path_params["task_id"]
    task = await run_in_threadpool(_manager(request).stop_execution, task_id)
    if not task:
        return JSONResponse({"error": "Task not found"}, status_code=404)
    return JSONResponse(_task_dict(task))


async def api_clear_error(request: Request):
    task_id = request.path_params["task_id"]
    task = await run_in_threadpool(_manager(request).clear_error, task_id)
    if not task:
        return JSONResponse({"error": "Task not found"}, status_code=404)
    return JSONResponse(_task_dict(task))


async def api_delete_task(request: Request):
    task_id = request.path_params["task_id"]
    deleted = await run_in_threadpool(_manager(request).delete_task, task_id)
    if not deleted:
        return JSONResponse({"error": "Task not found"}, status_code=404)
    return JSONResponse({"deleted": task_id})


async def api_task_executions(request: Request):
    task_id = request.path_params["task_id"]
    history = _manager(request).execution_history(task_id)
    return JSONResponse([_execution_dict(e) for e in history])


async def api_system_hooks(request: Request):
    return JSONResponse([h.to_dict() for h in registry.all()])


async def api_events(request: Request):
    """Server-sent events of hook started/completed/failed notifications."""
    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue()
    unsubscribe = _manager(request).subscribe(
        lambda event: loop.call_soon_threadsafe(events.put_nowait, event.to_dict())
    )

    async def stream():
        try:
            while True:
                event = await events.get()
                yield f"event: {event['event']}\ndata: {json.dumps(event)}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(stream(), media_type="text/event-stream")


# ── Serialization ─────────────────────────────────────────────────────────────


def _board_dict(b) -> dict:
    return {
        "id": b.id,
        "name": b.name,
        "repo_path": b.repo_path,
        "slack_channel": b.slack_channel,
        "created_at": b.created_at.isoformat() if b.created_at else None,
    }


def _column_dict(c) -> dict:
    return {
        "id": c.id,
        "board_id": c.board_id,
        "name": c.name,
        "position": c.position,
        "settings": c.settings,
    }


def _task_dict(t) -> dict:
    return {
        "id": t.id,
        "board_id": t.board_id,
        "column_id": t.column_id,
        "title": t.title,
        "description": t.description,
        "agent_status": t.agent_status,
        "agent_status_message": t.agent_status_message,
        "error_message": t.error_message,
        "in_progress": t.in_progress,
        "executed_hooks": t.executed_hooks,
        "worktree_path": t.worktree_path,
        "branch_name": t.branch_name,
        "auto_start": t.auto_start,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def _execution_dict(e) -> dict:
    return {
        "id": e.id,
        "hook_id": e.hook_id,
        "hook_name": e.hook_name,
        "column_hook_id": e.column_hook_id,
        "triggering_column_id": e.triggering_column_id,
        "status": e.status,
        "skip_reason": e.skip_reason,
        "error_message": e.error_message,
        "result": e.result,
        "queued_at": e.queued_at.isoformat() if e.queued_at else None,
        "started_at": e.started_at.isoformat() if e.started_at else None,
        "completed_at": e.completed_at.isoformat() if e.completed_at else None,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(config: Config | None = None) -> Starlette:
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        manager = BoardManager(config.db_path, config)
        if config.slack_bot_token:
            manager.subscribe(SlackNotifier(config.db_path, config.slack_bot_token))
        await run_in_threadpool(manager.start)
        app.state.manager = manager
        try:
            yield
        finally:
            await run_in_threadpool(manager.shutdown)

    routes = [
        Route("/api/boards", api_list_boards),
        Route("/api/boards/{board_id}/columns", api_board_columns),
        Route("/api/boards/{board_id}/tasks", api_board_tasks, methods=["GET"]),
        Route("/api/boards/{board_id}/tasks", api_create_task, methods=["POST"]),
        Route("/api/tasks/{task_id}", api_get_task, methods=["GET"]),
        Route("/api/tasks/{task_id}", api_delete_task, methods=["DELETE"]),
        Route("/api/tasks/{task_id}/move", api_move_task, methods=["POST"]),
        Route("/api/tasks/{task_id}/stop", api_stop_execution, methods=["POST"]),
        Route("/api/tasks/{task_id}/clear-error", api_clear_error, methods=["POST"]),
        Route("/api/tasks/{task_id}/executions", api_task_executions),
        Route("/api/system-hooks", api_system_hooks),
        Route("/api/events", api_events),
    ]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.config = config
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
