"""Background tasks with queryable status."""
import logging
import threading
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config import get_settings
from ..errors import AsyncTimeout

logger = logging.getLogger("nodectl.tasks")


class TaskState(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'


def _now() -> str:
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


@dataclass
class TaskRecord:
    """Status of one background task."""
    id: str
    name: str
    node_id: Optional[str] = None
    state: TaskState = TaskState.PENDING
    created_at: str = field(default_factory=_now)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    result: Any = None
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.TIMED_OUT)

    def to_dict(self) -> Dict[str, Any]:
        result = self.result
        if hasattr(result, 'to_dict'):
            result = result.to_dict()
        elif hasattr(result, '__dataclass_fields__'):
            result = {k: getattr(result, k) for k in result.__dataclass_fields__}
        return {
            'id': self.id,
            'name': self.name,
            'node_id': self.node_id,
            'state': self.state.value,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'result': result,
            'error': self.error,
        }


@dataclass
class TaskHandle:
    """What a caller gets back when work is launched in the background."""
    id: str
    future: Future
    record: TaskRecord

    def result(self, timeout: Optional[float] = None) -> Any:
        return self.future.result(timeout=timeout)

    @property
    def state(self) -> TaskState:
        return self.record.state


class TaskRunner:
    """Thread pool that keeps a status record for every submitted task.

    Tasks cannot be cancelled once running. Only the newest ``retention``
    finished records are kept; pending and running tasks are never evicted.
    """

    def __init__(self, max_workers: Optional[int] = None, retention: Optional[int] = None):
        settings = get_settings()
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or settings.max_workers,
            thread_name_prefix="nodectl-task",
        )
        self.retention = retention or settings.task_retention
        self._records: Dict[str, TaskRecord] = {}
        self._handles: Dict[str, TaskHandle] = {}
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args,
               node_id: Optional[str] = None, **kwargs) -> TaskHandle:
        """Run ``fn(*args, **kwargs)`` in the pool and return its handle."""
        record = TaskRecord(id=uuid.uuid4().hex, name=name, node_id=node_id)
        with self._lock:
            self._records[record.id] = record

        def run():
            self._update(record, state=TaskState.RUNNING, started_at=_now())
            logger.info("Task %s (%s) started", record.id, name)
            try:
                result = fn(*args, **kwargs)
            except AsyncTimeout as e:
                logger.error("Task %s (%s) timed out: %s", record.id, name, e)
                self._update(record, state=TaskState.TIMED_OUT, error=str(e), finished_at=_now())
                self._evict()
                raise
            except Exception as e:
                logger.error("Task %s (%s) failed: %s\n%s", record.id, name, e, traceback.format_exc())
                self._update(record, state=TaskState.FAILED, error=f"{type(e).__name__}: {e}",
                             finished_at=_now())
                self._evict()
                raise
            self._update(record, state=TaskState.SUCCEEDED, result=result, finished_at=_now())
            self._evict()
            logger.info("Task %s (%s) succeeded", record.id, name)
            return result

        future = self._pool.submit(run)
        handle = TaskHandle(id=record.id, future=future, record=record)
        with self._lock:
            if record.id in self._records:
                self._handles[record.id] = handle
        return handle

    def _update(self, record: TaskRecord, **changes) -> None:
        with self._lock:
            for key, value in changes.items():
                setattr(record, key, value)

    def _evict(self) -> None:
        with self._lock:
            finished = [task_id for task_id, r in self._records.items() if r.done]
            for task_id in finished[:max(len(finished) - self.retention, 0)]:
                del self._records[task_id]
                self._handles.pop(task_id, None)

    def handle(self, task_id: str) -> Optional[TaskHandle]:
        with self._lock:
            return self._handles.get(task_id)

    def wait(self, task_id: str, timeout: Optional[float] = None) -> Any:
        """Block on a task's future; re-raises whatever the task raised."""
        handle = self.handle(task_id)
        if handle is None:
            raise KeyError(task_id)
        return handle.result(timeout=timeout)

    def get(self, task_id: str) -> Optional[TaskRecord]:
        with self._lock:
            return self._records.get(task_id)

    def list(self, node_id: Optional[str] = None) -> List[TaskRecord]:
        with self._lock:
            return [r for r in self._records.values() if node_id is None or r.node_id == node_id]

    def active_for(self, node_id: str) -> Optional[TaskRecord]:
        """The pending or running task for a node, if any."""
        with self._lock:
            for record in self._records.values():
                if record.node_id == node_id and not record.done:
                    return record
        return None

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
