"""Schedule analysis over the task dependency graph.

Contains utilities for:
- computing each task's earliest start date,
- identifying one critical path,
- building the dependents (inverse) relation,
- assembling one analysis record per task.

Every task lasts exactly one day. The graph is assumed acyclic (dependency
edits are rejected otherwise); prerequisites that are not part of the input
are skipped rather than treated as errors.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from django.utils import timezone

TASK_DURATION_DAYS = 1
TASK_DURATION = timedelta(days=TASK_DURATION_DAYS)


def _dependency_ids(task: Mapping[str, Any]) -> List[int]:
    """Prerequisite ids of a task; accepts plain ids or resolved task dicts."""
    ids: List[int] = []
    for dep in task.get("dependencies") or []:
        dep_id = int(dep["id"]) if isinstance(dep, Mapping) else int(dep)
        if dep_id not in ids:
            ids.append(dep_id)
    return ids


def _build_graph(tasks: Sequence[Mapping[str, Any]]) -> Dict[int, List[int]]:
    return {int(t["id"]): _dependency_ids(t) for t in tasks}


def calculate_earliest_start_dates(tasks: Sequence[Mapping[str, Any]],
                                   now: Optional[datetime] = None) -> Dict[int, datetime]:
    """Earliest start date per task id.

    A task without prerequisites starts at `now`. Otherwise it starts when its
    latest-finishing prerequisite finishes. Each date is computed once; the
    traversal uses an explicit stack.
    """
    if now is None:
        now = timezone.now()

    graph = _build_graph(tasks)
    start_dates: Dict[int, datetime] = {}
    in_progress: Set[int] = set()

    for root in graph:
        if root in start_dates:
            continue
        stack = [root]
        while stack:
            node = stack[-1]
            if node in start_dates:
                stack.pop()
                continue
            if node not in in_progress:
                in_progress.add(node)
                stack.extend(
                    d for d in reversed(graph[node])
                    if d in graph and d not in start_dates and d not in in_progress
                )
                continue

            # all known prerequisites are resolved at this point
            stack.pop()
            in_progress.discard(node)
            finishes = [start_dates[d] + TASK_DURATION for d in graph[node] if d in start_dates]
            start_dates[node] = max(finishes) if finishes else now

    return start_dates


def calculate_finish_dates(start_dates: Mapping[int, Optional[datetime]]) -> Dict[int, datetime]:
    return {tid: start + TASK_DURATION for tid, start in start_dates.items() if start is not None}


def find_critical_path(tasks: Sequence[Mapping[str, Any]],
                       start_dates: Optional[Mapping[int, Optional[datetime]]] = None,
                       now: Optional[datetime] = None) -> List[int]:
    """Return one critical path as task ids, earliest first.

    The path ends at the task with the latest finish date and is traced back
    through the latest-finishing prerequisite at every step. Ties are broken
    by the lowest task id so the result does not depend on input order.
    """
    if start_dates is None:
        start_dates = calculate_earliest_start_dates(tasks, now)

    finish_dates = calculate_finish_dates(start_dates)
    if not finish_dates:
        return []

    def latest(candidates: List[int]) -> int:
        return max(candidates, key=lambda tid: (finish_dates[tid], -tid))

    graph = _build_graph(tasks)
    current = latest(list(finish_dates))
    path = [current]
    while True:
        candidates = [d for d in graph.get(current, ()) if d in finish_dates and d not in path]
        if not candidates:
            break
        current = latest(candidates)
        path.append(current)

    path.reverse()
    return path


def build_dependents_map(tasks: Sequence[Mapping[str, Any]]) -> Dict[int, List[int]]:
    """Map each task id to the ids of the tasks that directly depend on it."""
    dependents: Dict[int, List[int]] = {int(t["id"]): [] for t in tasks}
    for t in tasks:
        tid = int(t["id"])
        for dep_id in _dependency_ids(t):
            dependents.setdefault(dep_id, []).append(tid)
    return dependents


def schedule_tasks(tasks: Sequence[Mapping[str, Any]],
                   now: Optional[datetime] = None) -> Tuple[List[Dict[str, Any]], List[int]]:
    """Analyse every task in one pass.

    Returns:
        (analysis, critical_path): one record per task in input order, and the
        critical path as ordered task ids.
    """
    start_dates = calculate_earliest_start_dates(tasks, now)
    critical_path = find_critical_path(tasks, start_dates)
    on_path = set(critical_path)
    dependents = build_dependents_map(tasks)

    analysis = []
    for t in tasks:
        tid = int(t["id"])
        analysis.append({
            "id": tid,
            "title": t.get("title", ""),
            "earliest_start_date": start_dates.get(tid),
            "duration": TASK_DURATION_DAYS,
            "critical_path": tid in on_path,
            "dependencies": _dependency_ids(t),
            "dependents": dependents.get(tid, []),
        })
    return analysis, critical_path


def analyze_tasks(tasks: Sequence[Mapping[str, Any]],
                  now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    return schedule_tasks(tasks, now)[0]
