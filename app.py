import json
import logging
import math
import os
from typing import Annotated
from urllib.parse import urlsplit

from dotenv import load_dotenv
load_dotenv()

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from store import TaskStore, get_store

ALLOWED_ORIGINS      = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
BYPASS_TIMEOUT       = float(os.getenv("BYPASS_TIMEOUT", "10"))
BYPASS_ALLOWED_HOSTS = [h.strip() for h in os.getenv("BYPASS_ALLOWED_HOSTS", "").split(",") if h.strip()]

CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

MESSAGES = {
    "NOT_FOUND": "Không tìm thấy",
    "TASK_NOT_FOUND": "Không tìm thấy công việc",
    "INVALID_JSON": "Dữ liệu JSON không hợp lệ",
    "TITLE_REQUIRED": "Trường 'title' là bắt buộc và phải là chuỗi không rỗng",
    "TITLE_INVALID": "Trường 'title' phải là chuỗi không rỗng",
    "IS_COMPLETED_INVALID": "Trường 'isCompleted' phải là kiểu boolean",
    "INTERNAL_ERROR": "Lỗi hệ thống",
    "TASK_LIST": "Lấy danh sách công việc thành công",
    "TASK_DETAIL": "Lấy công việc thành công",
    "TASK_CREATED": "Tạo công việc thành công",
    "TASK_UPDATED": "Cập nhật công việc thành công",
    "TASK_DELETED": "Xoá công việc thành công",
    "BYPASS_SUCCESS": "Lấy data thành công",
}

# (payload key, Task attribute, expected type, message key), checked in order on PUT
UPDATE_FIELDS = [
    ("title", "title", str, "TITLE_INVALID"),
    ("isCompleted", "is_completed", bool, "IS_COMPLETED_INVALID"),
]

logger = logging.getLogger(__name__)

EMPTY = object()


class InvalidJSON(Exception):
    pass


class ProxyTargetRejected(Exception):
    pass


app = FastAPI(redirect_slashes=False)

TaskStoreDep = Annotated[TaskStore, Depends(get_store)]


def envelope(status_code: int, message: str, data=EMPTY) -> JSONResponse:
    if data is EMPTY:
        data = []
    return JSONResponse(
        status_code=status_code,
        content={"status": status_code, "message": message, "data": data},
    )


def cors_headers(request: Request) -> dict:
    headers = dict(CORS_HEADERS)
    origin = request.headers.get("origin", "")
    if origin in ALLOWED_ORIGINS:
        headers["Access-Control-Allow-Origin"] = origin
    return headers


@app.middleware("http")
async def cors_and_errors(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=cors_headers(request))
    try:
        response = await call_next(request)
    except InvalidJSON:
        response = envelope(400, MESSAGES["INVALID_JSON"])
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        response = envelope(500, MESSAGES["INTERNAL_ERROR"])
    response.headers.update(cors_headers(request))
    logger.debug("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.exception_handler(StarletteHTTPException)
async def route_miss(request: Request, exc: StarletteHTTPException):
    # Unknown paths and known paths hit with another method share one answer.
    if exc.status_code in (404, 405):
        return envelope(404, MESSAGES["NOT_FOUND"])
    return envelope(exc.status_code, str(exc.detail))


async def get_http_client():
    async with httpx.AsyncClient(timeout=BYPASS_TIMEOUT) as client:
        yield client


def reject_constant(name):
    # NaN and Infinity are not JSON.
    raise InvalidJSON(MESSAGES["INVALID_JSON"])


def trim(text: str) -> str:
    """Strip whitespace and byte-order marks from both ends."""
    while True:
        trimmed = text.strip().strip("\ufeff")
        if trimmed == text:
            return trimmed
        text = trimmed


async def parse_body(request: Request) -> dict:
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body.decode(), parse_constant=reject_constant)
    except ValueError:
        raise InvalidJSON(MESSAGES["INVALID_JSON"])
    # Arrays and scalars carry no fields.
    if not isinstance(payload, dict):
        return {}
    return payload


def parse_id_from_path(path: str) -> float | None:
    """
    Last path segment of a /api/tasks path as a number.

    Anything that is not a number becomes NaN, which never equals a task id,
    so the caller answers "task not found" rather than a parse error.
    """
    if not path.startswith("/api/tasks"):
        return None
    try:
        return float(path.split("/")[-1])
    except ValueError:
        return math.nan


def validate_field(payload: dict, field: str, expected: type, message: str, changes: dict, attr: str):
    """Collect payload[field] into changes; return a 400 response on a type mismatch."""
    if field not in payload:
        return None
    value = payload[field]
    # bool is a subclass of int, but 1 is not a valid title and "1" not a valid flag
    if type(value) is not expected:
        return envelope(400, message)
    changes[attr] = value
    return None


@app.get("/api/tasks")
async def list_tasks(store: TaskStoreDep):
    return envelope(200, MESSAGES["TASK_LIST"], [t.to_json() for t in store.list()])


@app.get("/api/tasks/{rest:path}")
async def get_task(request: Request, store: TaskStoreDep):
    task_id = parse_id_from_path(request.url.path)
    if task_id is None:
        return envelope(404, MESSAGES["NOT_FOUND"])
    task = store.get(task_id)
    if task is None:
        return envelope(404, MESSAGES["TASK_NOT_FOUND"])
    return envelope(200, MESSAGES["TASK_DETAIL"], task.to_json())


@app.post("/api/tasks")
async def create_task(request: Request, store: TaskStoreDep):
    payload = await parse_body(request)
    title = payload.get("title")
    if not isinstance(title, str) or trim(title) == "":
        return envelope(400, MESSAGES["TITLE_REQUIRED"])
    task = store.create(trim(title))
    logger.info("Created task %s", task.id)
    return envelope(201, MESSAGES["TASK_CREATED"], task.to_json())


@app.put("/api/tasks/{rest:path}")
async def update_task(request: Request, store: TaskStoreDep):
    task_id = parse_id_from_path(request.url.path)
    if task_id is None:
        return envelope(404, MESSAGES["NOT_FOUND"])
    task = store.get(task_id)
    if task is None:
        return envelope(404, MESSAGES["TASK_NOT_FOUND"])

    payload = await parse_body(request)
    changes = {}
    for field, attr, expected, message_key in UPDATE_FIELDS:
        rejected = validate_field(payload, field, expected, MESSAGES[message_key], changes, attr)
        if rejected is not None:
            return rejected

    task = store.update(task, changes)
    return envelope(200, MESSAGES["TASK_UPDATED"], task.to_json())


@app.delete("/api/tasks/{rest:path}")
async def delete_task(request: Request, store: TaskStoreDep):
    task_id = parse_id_from_path(request.url.path)
    if task_id is None:
        return envelope(404, MESSAGES["NOT_FOUND"])
    if not store.delete(task_id):
        return envelope(404, MESSAGES["TASK_NOT_FOUND"])
    logger.info("Deleted task %s", int(task_id))
    return envelope(200, MESSAGES["TASK_DELETED"])


@app.get("/api/bypass-cors{rest:path}")
async def bypass_cors(
    request: Request,
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
):
    url = request.query_params.get("url")
    if BYPASS_ALLOWED_HOSTS and urlsplit(url or "").hostname not in BYPASS_ALLOWED_HOSTS:
        logger.warning("Rejected proxy target %r", url)
        raise ProxyTargetRejected(url)
    r = await client.get(url)
    data = r.json()["data"]
    return envelope(200, MESSAGES["BYPASS_SUCCESS"], data)
