import time

from pydantic import BaseModel, ConfigDict, Field


class Task(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str
    is_completed: bool = Field(default=False, alias="isCompleted")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class TaskStore:
    """
    In-memory, insertion-ordered task collection.

    Handlers receive it through the get_store dependency, so a database-backed
    store only has to offer the same methods.
    """

    def __init__(self, clock=now_ms):
        self._tasks: list[Task] = []
        self._clock = clock
        self._last_id = 0

    def _next_id(self) -> int:
        # Millisecond timestamps, bumped when two creations share a tick.
        task_id = max(self._clock(), self._last_id + 1)
        self._last_id = task_id
        return task_id

    def list(self) -> list[Task]:
        return list(self._tasks)

    def get(self, task_id) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def create(self, title: str) -> Task:
        task = Task(id=self._next_id(), title=title, is_completed=False)
        self._tasks.append(task)
        return task

    def update(self, task: Task, changes: dict) -> Task:
        for field, value in changes.items():
            setattr(task, field, value)
        return task

    def delete(self, task_id) -> bool:
        for index, task in enumerate(self._tasks):
            if task.id == task_id:
                del self._tasks[index]
                return True
        return False

    def clear(self) -> None:
        self._tasks.clear()
        self._last_id = 0


store = TaskStore()


def get_store() -> TaskStore:
    return store
