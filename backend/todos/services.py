"""Storage operations around the dependency graph.

Write paths run inside one transaction each, so a rejected or failed edit
leaves the stored graph exactly as it was.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.db import transaction

from .exceptions import CircularDependencyError, TaskNotFound, UnknownDependency
from .graph import would_create_cycle
from .images import search_image
from .models import Task, TaskDependency
from .scheduling import schedule_tasks

logger = logging.getLogger(__name__)


def load_dependency_graph(lock: bool = False) -> Dict[int, List[int]]:
    """Snapshot of the stored edges: task id -> prerequisite ids.

    With `lock`, every task row is locked until the surrounding transaction
    ends, so concurrent edits of different tasks cannot both pass the cycle
    check against the same stale snapshot.
    """
    tasks = Task.objects.select_for_update() if lock else Task.objects.all()
    graph: Dict[int, List[int]] = {pk: [] for pk in tasks.order_by('pk').values_list('pk', flat=True)}
    edges = TaskDependency.objects.order_by('task_id', 'depends_on_id').values_list('task_id', 'depends_on_id')
    for task_id, depends_on_id in edges:
        graph.setdefault(task_id, []).append(depends_on_id)
    return graph


def _unique(ids: Iterable[int]) -> List[int]:
    seen: List[int] = []
    for i in ids:
        if i not in seen:
            seen.append(i)
    return seen


def list_tasks():
    return Task.objects.prefetch_related('dependencies')


def get_task(task_id: int) -> Task:
    try:
        return list_tasks().get(pk=task_id)
    except Task.DoesNotExist:
        raise TaskNotFound()


def set_dependencies(task_id: int, dependency_ids: Iterable[int]) -> Task:
    """Replace the prerequisites of a task, rejecting edits that close a cycle.

    Raises:
        TaskNotFound: no task with `task_id`.
        CircularDependencyError: the new edges would create a cycle.
        UnknownDependency: a proposed prerequisite does not exist.
    """
    dependency_ids = _unique(dependency_ids)

    with transaction.atomic():
        graph = load_dependency_graph(lock=True)
        if task_id not in graph:
            raise TaskNotFound()

        if would_create_cycle(task_id, dependency_ids, graph):
            logger.warning("Rejected dependencies %s for task %s: cycle detected", dependency_ids, task_id)
            raise CircularDependencyError()

        missing = [i for i in dependency_ids if i not in graph]
        if missing:
            raise UnknownDependency(f"Unknown dependency ids: {missing}")

        TaskDependency.objects.filter(task_id=task_id).delete()
        TaskDependency.objects.bulk_create(
            TaskDependency(task_id=task_id, depends_on_id=dep_id) for dep_id in dependency_ids
        )

    logger.info("Task %s now depends on %s", task_id, dependency_ids)
    return get_task(task_id)


def create_task(title: str,
                due_date: Optional[datetime] = None,
                dependency_ids: Iterable[int] = ()) -> Task:
    """Create a task, attach a matching image if one is found, then its prerequisites."""
    image_url = search_image(title)

    with transaction.atomic():
        task = Task.objects.create(title=title, due_date=due_date, image_url=image_url)
        dependency_ids = _unique(dependency_ids)
        if dependency_ids:
            set_dependencies(task.pk, dependency_ids)

    logger.info("Created task %s (%r)", task.pk, title)
    return get_task(task.pk)


def delete_task(task_id: int) -> None:
    """Delete a task together with every edge that touches it."""
    with transaction.atomic():
        if not Task.objects.filter(pk=task_id).exists():
            raise TaskNotFound()
        TaskDependency.objects.filter(task_id=task_id).delete()
        TaskDependency.objects.filter(depends_on_id=task_id).delete()
        Task.objects.filter(pk=task_id).delete()

    logger.info("Deleted task %s", task_id)


def analyze_all(now: Optional[datetime] = None) -> Tuple[List[Task], List[Dict[str, Any]], List[int]]:
    """Fetch every task once and analyse the whole graph.

    Returns:
        (tasks, analysis, critical_path)
    """
    tasks = list(list_tasks())
    snapshot = [
        {"id": t.pk, "title": t.title, "dependencies": sorted(d.pk for d in t.dependencies.all())}
        for t in tasks
    ]
    analysis, critical_path = schedule_tasks(snapshot, now)
    return tasks, analysis, critical_path
