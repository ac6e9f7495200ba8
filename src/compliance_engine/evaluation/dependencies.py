"""
Dependency Resolver - orders generated tasks by their prerequisites.

Only prerequisites present in the same batch form edges. Cycles are detected
with a DFS over the recursion stack; ordering uses Kahn's algorithm seeded and
expanded in input order, so independent tasks keep their relative order.
"""

from collections import deque
from typing import Dict, List, Mapping, Optional, Sequence, Set

from compliance_engine.core.exceptions import DependencyCycleError
from compliance_engine.core.logging import get_logger
from compliance_engine.evaluation.models import GeneratedTask
from compliance_engine.rules.models import TaskPriority

logger = get_logger("dependency_resolver")

BLOCKED_NOTE = "\n\n⚠️ Waiting on: {titles}"


def find_cycle(graph: Mapping[str, Sequence[str]]) -> Optional[List[str]]:
    """Return the first cycle found as a closed path (``[a, b, a]``), or None."""
    visited: Set[str] = set()
    rec_stack: Set[str] = set()
    path: List[str] = []

    def dfs(node: str) -> Optional[List[str]]:
        if node in rec_stack:
            cycle_start = path.index(node)
            return path[cycle_start:] + [node]
        if node in visited:
            return None

        visited.add(node)
        rec_stack.add(node)
        path.append(node)

        for neighbor in graph.get(node, ()):
            cycle = dfs(neighbor)
            if cycle:
                return cycle

        rec_stack.remove(node)
        path.pop()
        return None

    for node in graph:
        if node not in visited:
            cycle = dfs(node)
            if cycle:
                return cycle
    return None


class DependencyResolver:
    """Builds the prerequisite graph of a task batch and orders it."""

    def build_graph(self, tasks: Sequence[GeneratedTask]) -> Dict[str, List[str]]:
        """Map each rule id to its prerequisites that are present in the batch."""
        present = {task.rule_id for task in tasks}
        return {
            task.rule_id: [dep for dep in task.dependencies if dep in present and dep != task.rule_id]
            for task in tasks
        }

    def resolve(self, tasks: Sequence[GeneratedTask]) -> List[GeneratedTask]:
        """
        Order tasks so prerequisites come first and annotate blocked tasks.

        Raises:
            DependencyCycleError: If the in-batch prerequisites form a cycle
        """
        if not tasks:
            return []

        graph = self.build_graph(tasks)
        cycle = find_cycle(graph)
        if cycle:
            raise DependencyCycleError(
                f"Circular dependency detected involving task: {cycle[0]}", cycle=cycle
            )

        order = self.topological_sort(tasks, graph)
        by_id = {task.rule_id: task for task in tasks}
        ordered = [by_id[rule_id] for rule_id in order]
        return self.update_task_states(ordered, graph)

    def topological_sort(
        self, tasks: Sequence[GeneratedTask], graph: Mapping[str, Sequence[str]]
    ) -> List[str]:
        """Kahn's algorithm over prerequisite edges, stable with respect to input order."""
        ids = [task.rule_id for task in tasks]
        in_degree = {rule_id: len(graph[rule_id]) for rule_id in ids}
        dependents: Dict[str, List[str]] = {rule_id: [] for rule_id in ids}
        for rule_id in ids:
            for dep in graph[rule_id]:
                dependents[dep].append(rule_id)

        queue = deque(rule_id for rule_id in ids if in_degree[rule_id] == 0)
        result: List[str] = []

        while queue:
            node = queue.popleft()
            result.append(node)
            for dependent in dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(result) != len(ids):
            missing = [rule_id for rule_id in ids if rule_id not in result]
            raise DependencyCycleError(
                f"Cyclic dependencies detected. Tasks in cycles: {', '.join(missing)}",
                cycle=missing,
            )
        return result

    def update_task_states(
        self, tasks: Sequence[GeneratedTask], graph: Mapping[str, Sequence[str]]
    ) -> List[GeneratedTask]:
        """Mark tasks with incomplete in-batch prerequisites as blocked."""
        by_id = {task.rule_id: task for task in tasks}
        updated: List[GeneratedTask] = []

        for task in tasks:
            pending = [dep for dep in graph.get(task.rule_id, []) if not by_id[dep].completed]
            if not pending:
                updated.append(task)
                continue

            titles = ", ".join(by_id[dep].title for dep in pending)
            updated.append(
                task.model_copy(
                    update={
                        "description": task.description + BLOCKED_NOTE.format(titles=titles),
                        "priority": TaskPriority.LOW,
                        "is_blocked": True,
                        "blocked_by": pending,
                    }
                )
            )
        return updated

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_available_tasks(self, tasks: Sequence[GeneratedTask]) -> List[GeneratedTask]:
        """Incomplete tasks whose in-batch prerequisites are all completed."""
        graph = self.build_graph(tasks)
        by_id = {task.rule_id: task for task in tasks}
        return [
            task for task in tasks
            if not task.completed and all(by_id[dep].completed for dep in graph[task.rule_id])
        ]

    def get_blocked_tasks(self, tasks: Sequence[GeneratedTask]) -> List[GeneratedTask]:
        """Incomplete tasks waiting on at least one incomplete prerequisite."""
        available = {task.rule_id for task in self.get_available_tasks(tasks)}
        return [task for task in tasks if not task.completed and task.rule_id not in available]

    def get_dependency_chain(self, rule_id: str, tasks: Sequence[GeneratedTask]) -> List[str]:
        """All transitive in-batch prerequisites of a task, deepest first."""
        graph = self.build_graph(tasks)
        chain: List[str] = []
        seen: Set[str] = set()

        def visit(node: str) -> None:
            for dep in graph.get(node, []):
                if dep not in seen:
                    seen.add(dep)
                    visit(dep)
                    chain.append(dep)

        visit(rule_id)
        return chain

    def validate_dependencies(self, tasks: Sequence[GeneratedTask]) -> List[str]:
        """Problems in a batch: missing prerequisites, self references and cycles."""
        problems: List[str] = []
        present = {task.rule_id for task in tasks}
        for task in tasks:
            for dep in task.dependencies:
                if dep == task.rule_id:
                    problems.append(f"Task {task.rule_id} depends on itself")
                elif dep not in present:
                    problems.append(f"Task {task.rule_id} depends on missing task {dep}")

        cycle = find_cycle(self.build_graph(tasks))
        if cycle:
            problems.append(f"Circular dependency: {' -> '.join(cycle)}")
        return problems
