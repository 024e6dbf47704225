import json
import logging
import os
from pathlib import Path
from typing import Annotated, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from store import NotFound, Store

DATA_FILE = os.getenv("DATA_FILE", str(Path(__file__).parent / "items.json"))

logger = logging.getLogger(__name__)

app = FastAPI(title="apps-todos")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

data_store = Store(DATA_FILE)


@app.on_event("startup")
def startup():
    data_store.load()


def get_store() -> Store:
    return data_store


async def json_body(request: Request) -> dict:
    """The request body as a JSON object; an empty body reads as ``{}``.

    Bodies that are not a JSON object are faults like any other and end up
    in the generic 500 handler.
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    body = json.loads(raw)
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    return body


StoreDep = Annotated[Store, Depends(get_store)]
JsonBody = Annotated[dict, Depends(json_body)]


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


# Apps

@app.get("/apps")
def list_apps(store: StoreDep):
    return store.list_apps()


@app.post("/apps", status_code=201)
def create_app(body: JsonBody, store: StoreDep):
    return store.create_app(body)


@app.post("/apps/import", status_code=201)
def import_app(body: JsonBody, store: StoreDep):
    return store.import_app(body)


@app.put("/apps/{app_id}")
def rename_app(app_id: str, body: JsonBody, store: StoreDep):
    return store.rename_app(app_id, body.get("name"))


@app.get("/apps/{app_id}/export")
def export_app(app_id: str, store: StoreDep):
    return store.export_app(app_id)


# Todos

@app.get("/apps/{app_id}/todos/search")
def search_todos(
    app_id: str,
    store: StoreDep,
    q: Optional[str] = None,
    status: Optional[str] = None,
    completed: Optional[str] = None,
):
    if not q:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')
    return store.search_todos(app_id, q, status, completed)


@app.get("/apps/{app_id}/todos/filter")
def filter_todos(
    app_id: str,
    store: StoreDep,
    status: Optional[str] = None,
    completed: Optional[str] = None,
):
    return store.filter_todos(app_id, status, completed)


@app.get("/apps/{app_id}/todos")
def list_todos(app_id: str, store: StoreDep):
    return store.list_todos(app_id)


@app.post("/apps/{app_id}/todos")
def query_todos(app_id: str, body: JsonBody, store: StoreDep):
    return store.list_todos(
        app_id,
        query=body.get("query"),
        archived=body.get("archived"),
        completed=body.get("completed"),
    )


@app.post("/apps/{app_id}/todos/new", status_code=201)
def create_todo(app_id: str, body: JsonBody, store: StoreDep):
    return store.create_todo(app_id, body)


@app.put("/apps/{app_id}/todos/{todo_id}")
def update_todo(app_id: str, todo_id: str, body: JsonBody, store: StoreDep):
    return store.update_todo(app_id, todo_id, body)


@app.delete("/apps/{app_id}/todos/{todo_id}", status_code=204)
def archive_todo(app_id: str, todo_id: str, store: StoreDep):
    store.archive_todo(app_id, todo_id)
    return Response(status_code=204)


@app.put("/apps/{app_id}/todos/{todo_id}/check")
def check_todo(app_id: str, todo_id: str, store: StoreDep):
    return store.toggle_todo(app_id, todo_id)


# Tasks

@app.get("/apps/{app_id}/todos/{todo_id}/tasks")
def list_tasks(app_id: str, todo_id: str, store: StoreDep):
    return store.list_tasks(app_id, todo_id)


@app.post("/apps/{app_id}/todos/{todo_id}/tasks", status_code=201)
def add_task(app_id: str, todo_id: str, body: JsonBody, store: StoreDep):
    return store.add_task(app_id, todo_id, body)


@app.put("/apps/{app_id}/todos/{todo_id}/tasks/{task_index}")
def update_task(app_id: str, todo_id: str, task_index: str, body: JsonBody, store: StoreDep):
    return store.update_task(app_id, todo_id, task_index, body)


@app.put("/apps/{app_id}/todos/{todo_id}/tasks/{task_index}/toggle")
def toggle_task(app_id: str, todo_id: str, task_index: str, store: StoreDep):
    return store.toggle_task(app_id, todo_id, task_index)


@app.delete("/apps/{app_id}/todos/{todo_id}/tasks/{task_index}", status_code=204)
def delete_task(app_id: str, todo_id: str, task_index: str, store: StoreDep):
    store.delete_task(app_id, todo_id, task_index)
    return Response(status_code=204)
