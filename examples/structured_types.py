"""Using dataclasses and enums as RPC parameters and return types.

Dataclass fields are mapped to Arrow struct fields; enums travel by member
name.  The implementation keeps its state between connections, so several
single-use proxies can build on each other's calls.

Run::

    python examples/structured_types.py
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from serde_dispatch import serve_pipe

# ---------------------------------------------------------------------------
# Domain types
# ---------------------------------------------------------------------------


class Priority(Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Task:
    """A task with structured fields.

    Supported field types include: str, bytes, int, float, bool, Enum,
    list[T], dict[K, V], frozenset[T], optional types, and nested
    dataclasses.
    """

    title: str
    priority: Priority
    tags: list[str]
    metadata: dict[str, str]
    done: bool = False


@dataclass(frozen=True)
class TaskSummary:
    """Summary returned by the task service."""

    total: int
    high_priority: int
    titles: list[str]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TaskService(Protocol):
    """Service that accepts and returns dataclass parameters."""

    def create_task(self, task: Task) -> str:
        """Store a task and return its ID."""
        ...

    def summarize(self) -> TaskSummary:
        """Return a summary of all stored tasks."""
        ...


class TaskServiceImpl:
    """In-memory task store."""

    def __init__(self) -> None:
        """Initialize the store."""
        self._tasks: list[Task] = []

    def create_task(self, task: Task) -> str:
        """Store a task and return its ID."""
        self._tasks.append(task)
        return f"TASK-{len(self._tasks) - 1}"

    def summarize(self) -> TaskSummary:
        """Return a summary of all stored tasks."""
        return TaskSummary(
            total=len(self._tasks),
            high_priority=sum(1 for t in self._tasks if t.priority == Priority.HIGH),
            titles=[t.title for t in self._tasks],
        )


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the dataclass example."""
    store = TaskServiceImpl()
    tasks = [
        Task(title="Write documentation", priority=Priority.HIGH, tags=["docs", "urgent"], metadata={"who": "alice"}),
        Task(title="Run benchmarks", priority=Priority.LOW, tags=["perf"], metadata={"env": "staging"}),
    ]
    for task in tasks:
        with serve_pipe(TaskService, store) as svc:
            print(f"Created: {svc.create_task(task=task)}")

    with serve_pipe(TaskService, store) as svc:
        summary = svc.summarize()
    print(f"\nTotal tasks:    {summary.total}")
    print(f"High priority:  {summary.high_priority}")
    print(f"Titles:         {summary.titles}")


if __name__ == "__main__":
    main()
