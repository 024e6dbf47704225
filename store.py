import json
import logging
import os
import threading
from copy import deepcopy
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class TaskModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: Optional[str] = None
    isCompleted: bool = False


class TodoModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: Optional[str] = None
    isCompleted: bool = False
    isArchived: bool = False
    createdAt: Optional[str] = None
    completedAt: Optional[str] = None
    tasks: list[TaskModel] = []


class AppModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: Optional[str] = None
    createdAt: Optional[str] = None
    todos: list[TodoModel] = []


class RootModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    Apps: list[AppModel]


class NotFound(LookupError):
    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"{entity} not found")

    @property
    def message(self) -> str:
        return str(self)


class StoreCorrupted(RuntimeError):
    pass


def now_iso() -> str:
    # UTC, millisecond precision, "Z" suffix.
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_id(value) -> Optional[int]:
    """Path ids arrive as text; anything that is not an integer resolves to nothing."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _set_completed(todo: dict, completed: bool) -> None:
    todo["isCompleted"] = completed
    if completed:
        todo.setdefault("completedAt", now_iso())
    else:
        todo.pop("completedAt", None)


def matches_body_filter(todo: dict, query=None, archived=None, completed=None) -> bool:
    """Predicate behind the POST body filter.

    Values of the wrong JSON type are ignored as if they were absent, and a
    missing ``archived`` means "active todos only".
    """
    if isinstance(archived, bool):
        if todo.get("isArchived", False) != archived:
            return False
    elif todo.get("isArchived", False):
        return False
    if isinstance(query, str) and query.strip():
        if query.lower() not in (todo.get("name") or "").lower():
            return False
    if isinstance(completed, bool) and todo.get("isCompleted", False) != completed:
        return False
    return True


def matches_query_filter(todo: dict, status: Optional[str] = None, completed: Optional[str] = None) -> bool:
    """Predicate behind the query-string ``/search`` and ``/filter`` routes."""
    if status:
        archived = todo.get("isArchived", False)
        if (status == "archived") != bool(archived):
            return False
    if completed:
        if todo.get("isCompleted", False) != (completed == "true"):
            return False
    return True


class Store:
    """The whole Apps -> Todos -> Tasks tree, resident in memory.

    Every operation runs resolve, mutate and save under one lock, so the
    handlers that FastAPI runs on its thread pool see strictly serial updates.
    Methods hand back deep copies, never the live nodes of the tree.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.lock = threading.Lock()
        self.data: dict = {"Apps": []}

    # -- persistence -------------------------------------------------------

    def load(self) -> None:
        with self.lock:
            if not self.path.exists():
                self.data = {"Apps": []}
                self.save()
                logger.info("Created %s", self.path)
                return
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                root = RootModel.model_validate(raw)
            except (ValueError, ValidationError) as exc:
                raise StoreCorrupted(f"{self.path} does not hold a valid Apps document: {exc}") from exc
            self.data = root.model_dump(exclude_none=True)
            logger.info("Loaded %d apps from %s", len(self.data["Apps"]), self.path)

    def save(self) -> None:
        """Rewrite the whole document; callers hold the lock."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)
        os.replace(tmp, self.path)

    # -- ids and lookup ----------------------------------------------------

    def next_app_id(self) -> int:
        return max((a["id"] for a in self.data["Apps"]), default=0) + 1

    @staticmethod
    def next_todo_id(app: dict) -> int:
        return max((t["id"] for t in app.get("todos", [])), default=0) + 1

    def _app(self, app_id) -> dict:
        wanted = parse_id(app_id)
        app = next((a for a in self.data["Apps"] if a["id"] == wanted), None)
        if app is None:
            logger.debug("App %s not found", app_id)
            raise NotFound("App")
        return app

    def _todo(self, app_id, todo_id) -> dict:
        app = self._app(app_id)
        wanted = parse_id(todo_id)
        todo = next((t for t in app["todos"] if t["id"] == wanted), None)
        if todo is None:
            logger.debug("Todo %s not found in app %s", todo_id, app_id)
            raise NotFound("Todo")
        return todo

    def _task_index(self, todo: dict, index) -> int:
        position = parse_id(index)
        if position is None or not 0 <= position < len(todo["tasks"]):
            logger.debug("Task index %s out of range", index)
            raise NotFound("Task")
        return position

    # -- apps --------------------------------------------------------------

    def list_apps(self) -> list:
        with self.lock:
            return deepcopy(self.data["Apps"])

    def create_app(self, fields: dict) -> dict:
        with self.lock:
            app = {**fields, "id": self.next_app_id(), "createdAt": now_iso(), "todos": []}
            self.data["Apps"].append(app)
            self.save()
            logger.info("Created app %s", app["id"])
            return deepcopy(app)

    def rename_app(self, app_id, name) -> dict:
        with self.lock:
            app = self._app(app_id)
            app["name"] = name
            self.save()
            logger.info("Renamed app %s", app_id)
            return deepcopy(app)

    def export_app(self, app_id) -> dict:
        with self.lock:
            return deepcopy(self._app(app_id))

    def import_app(self, payload: dict) -> dict:
        with self.lock:
            app = dict(payload)
            app["id"] = self.next_app_id()
            app.setdefault("createdAt", now_iso())
            app["todos"] = [
                {**todo, "id": n, "tasks": todo.get("tasks", [])}
                for n, todo in enumerate(payload.get("todos") or [], start=1)
            ]
            self.data["Apps"].append(app)
            self.save()
            logger.info("Imported app %s with %d todos", app["id"], len(app["todos"]))
            return deepcopy(app)

    # -- todos -------------------------------------------------------------

    def list_todos(self, app_id, query=None, archived=None, completed=None) -> list:
        with self.lock:
            app = self._app(app_id)
            return deepcopy([t for t in app["todos"] if matches_body_filter(t, query, archived, completed)])

    def search_todos(self, app_id, q: str, status: Optional[str] = None, completed: Optional[str] = None) -> list:
        with self.lock:
            app = self._app(app_id)
            needle = q.lower()
            return deepcopy([
                t for t in app["todos"]
                if needle in (t.get("name") or "").lower() and matches_query_filter(t, status, completed)
            ])

    def filter_todos(self, app_id, status: Optional[str] = None, completed: Optional[str] = None) -> list:
        with self.lock:
            app = self._app(app_id)
            return deepcopy([t for t in app["todos"] if matches_query_filter(t, status, completed)])

    def create_todo(self, app_id, fields: dict) -> dict:
        with self.lock:
            app = self._app(app_id)
            todo = {
                **fields,
                "id": self.next_todo_id(app),
                "createdAt": now_iso(),
                "isArchived": False,
                "isCompleted": False,
                "tasks": [],
            }
            todo.pop("completedAt", None)
            app["todos"].append(todo)
            self.save()
            logger.info("Created todo %s in app %s", todo["id"], app_id)
            return deepcopy(todo)

    def update_todo(self, app_id, todo_id, fields: dict) -> dict:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            todo.update({k: v for k, v in fields.items() if k != "id"})
            # Only a real boolean drives completedAt; other values stay as sent.
            if isinstance(todo.get("isCompleted"), bool):
                _set_completed(todo, todo["isCompleted"])
            self.save()
            logger.info("Updated todo %s in app %s", todo_id, app_id)
            return deepcopy(todo)

    def archive_todo(self, app_id, todo_id) -> None:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            todo["isArchived"] = True
            self.save()
            logger.info("Archived todo %s in app %s", todo_id, app_id)

    def toggle_todo(self, app_id, todo_id) -> dict:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            todo.pop("completedAt", None)
            _set_completed(todo, not todo.get("isCompleted", False))
            self.save()
            logger.info("Todo %s in app %s is now %s", todo_id, app_id,
                        "completed" if todo["isCompleted"] else "open")
            return deepcopy(todo)

    # -- tasks -------------------------------------------------------------

    def list_tasks(self, app_id, todo_id) -> list:
        with self.lock:
            return deepcopy(self._todo(app_id, todo_id)["tasks"])

    def add_task(self, app_id, todo_id, fields: dict) -> dict:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            task = {"isCompleted": False, **fields}
            todo["tasks"].append(task)
            self.save()
            logger.info("Added task %s to todo %s in app %s", len(todo["tasks"]) - 1, todo_id, app_id)
            return deepcopy(task)

    def update_task(self, app_id, todo_id, index, fields: dict) -> dict:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            index = self._task_index(todo, index)
            todo["tasks"][index] = {**todo["tasks"][index], **fields}
            self.save()
            logger.info("Updated task %s of todo %s in app %s", index, todo_id, app_id)
            return deepcopy(todo["tasks"][index])

    def toggle_task(self, app_id, todo_id, index) -> dict:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            task = todo["tasks"][self._task_index(todo, index)]
            task["isCompleted"] = not task.get("isCompleted", False)
            self.save()
            logger.info("Toggled task %s of todo %s in app %s", index, todo_id, app_id)
            return deepcopy(task)

    def delete_task(self, app_id, todo_id, index) -> dict:
        with self.lock:
            todo = self._todo(app_id, todo_id)
            task = todo["tasks"].pop(self._task_index(todo, index))
            self.save()
            logger.info("Deleted task %s of todo %s in app %s", index, todo_id, app_id)
            return deepcopy(task)
