"""Dependency graph checks.

A graph snapshot maps each task id to the ordered list of ids it depends on
(its prerequisites). Both checks here walk that mapping with an explicit
stack so long dependency chains never hit the recursion limit.
"""

from typing import Dict, Iterable, List, Mapping, Sequence, Set, Tuple

Graph = Mapping[int, Sequence[int]]


def would_create_cycle(task_id: int,
                       dependency_ids: Iterable[int],
                       graph: Graph) -> bool:
    """Return True if making `task_id` depend on `dependency_ids` closes a cycle.

    Args:
        task_id: the task whose prerequisites are being replaced.
        dependency_ids: the proposed prerequisite ids.
        graph: snapshot of the persisted edges. The current prerequisites of
               `task_id` are never followed since they are about to be replaced.

    Ids missing from `graph` are dead ends. An empty proposal never creates a
    cycle; a proposal naming `task_id` itself always does.
    """
    visited: Set[int] = set()   # fully explored, no path back to task_id
    on_stack: Set[int] = set()  # nodes on the active DFS path

    for start in dependency_ids:
        if start == task_id:
            return True
        if start in visited:
            continue

        stack = [(start, iter(graph.get(start, ())))]
        on_stack.add(start)
        while stack:
            node, prerequisites = stack[-1]
            for nxt in prerequisites:
                if nxt == task_id or nxt in on_stack:
                    return True
                if nxt not in visited:
                    on_stack.add(nxt)
                    stack.append((nxt, iter(graph.get(nxt, ()))))
                    break
            else:
                stack.pop()
                on_stack.discard(node)
                visited.add(node)

    return False


def _canonical_cycle(cycle: List[int]) -> List[int]:
    """Rotate a closed path so it starts (and ends) at its smallest id."""
    body = cycle[:-1]
    start = body.index(min(body))
    rotated = body[start:] + body[:start]
    return rotated + [rotated[0]]


def detect_circular_dependencies(graph: Graph) -> List[List[int]]:
    """Detect cycles in a whole dependency graph.

    Returns:
        A list of cycles, each a closed path of ids starting with its smallest
        id (e.g. [4, 4] for a self-dependency, [1, 2, 3, 1] for a 3-node cycle).
        Each distinct cycle is reported once. Empty when the graph is acyclic.
    """
    visited: Set[int] = set()
    cycles: List[List[int]] = []
    seen_cycles: Set[Tuple[int, ...]] = set()

    for root in sorted(graph):
        if root in visited:
            continue

        path: List[int] = [root]
        position: Dict[int, int] = {root: 0}
        iterators = [iter(graph.get(root, ()))]
        while iterators:
            nxt = next(iterators[-1], None)
            if nxt is None:
                iterators.pop()
                node = path.pop()
                del position[node]
                visited.add(node)
                continue

            if nxt in position:
                # back-edge onto the active path
                ordered = _canonical_cycle(path[position[nxt]:] + [nxt])
                key = tuple(ordered)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(ordered)
                continue
            if nxt in visited:
                continue

            position[nxt] = len(path)
            path.append(nxt)
            iterators.append(iter(graph.get(nxt, ())))

    return cycles
