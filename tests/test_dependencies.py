"""Tests for DependencyResolver."""

import pytest

from compliance_engine.core.exceptions import DependencyCycleError
from compliance_engine.evaluation.dependencies import DependencyResolver, find_cycle
from compliance_engine.rules.models import TaskPriority

from tests.conftest import make_task


@pytest.fixture
def resolver():
    return DependencyResolver()


class TestResolve:

    def test_prerequisite_moves_first_and_blocks(self, resolver):
        tasks = [make_task("A", dependencies=["B"]), make_task("B")]

        ordered = resolver.resolve(tasks)

        assert [task.rule_id for task in ordered] == ["B", "A"]
        blocked = ordered[1]
        assert blocked.is_blocked is True
        assert blocked.blocked_by == ["B"]
        assert blocked.priority is TaskPriority.LOW
        assert blocked.description.endswith("Waiting on: Task B")
        assert ordered[0].is_blocked is False
        # Inputs are not mutated
        assert tasks[0].is_blocked is False

    def test_completed_prerequisite_does_not_block(self, resolver):
        ordered = resolver.resolve([make_task("A", dependencies=["B"]), make_task("B", completed=True)])
        assert [task.rule_id for task in ordered] == ["B", "A"]
        assert ordered[1].is_blocked is False
        assert ordered[1].priority is TaskPriority.HIGH

    def test_independent_tasks_keep_order(self, resolver):
        tasks = [make_task("C"), make_task("A"), make_task("B")]
        assert [task.rule_id for task in resolver.resolve(tasks)] == ["C", "A", "B"]

    def test_out_of_batch_prerequisites_ignored(self, resolver):
        ordered = resolver.resolve([make_task("A", dependencies=["elsewhere"])])
        assert ordered[0].is_blocked is False

    def test_multiple_pending_prerequisites(self, resolver):
        tasks = [make_task("A", dependencies=["B", "C"]), make_task("B"), make_task("C")]
        ordered = resolver.resolve(tasks)
        assert [task.rule_id for task in ordered] == ["B", "C", "A"]
        assert ordered[2].blocked_by == ["B", "C"]
        assert "Waiting on: Task B, Task C" in ordered[2].description

    def test_cycle_raises(self, resolver):
        with pytest.raises(DependencyCycleError) as exc_info:
            resolver.resolve([make_task("A", dependencies=["B"]), make_task("B", dependencies=["A"])])
        assert exc_info.value.message == "Circular dependency detected involving task: A"
        assert exc_info.value.cycle == ["A", "B", "A"]

    def test_empty_batch(self, resolver):
        assert resolver.resolve([]) == []


class TestQueries:

    def test_available_and_blocked(self, resolver):
        tasks = [make_task("A", dependencies=["B"]), make_task("B"), make_task("C", completed=True)]
        assert [t.rule_id for t in resolver.get_available_tasks(tasks)] == ["B"]
        assert [t.rule_id for t in resolver.get_blocked_tasks(tasks)] == ["A"]

    def test_dependency_chain(self, resolver):
        tasks = [make_task("C", dependencies=["B"]), make_task("B", dependencies=["A"]), make_task("A")]
        assert resolver.get_dependency_chain("C", tasks) == ["A", "B"]
        assert resolver.get_dependency_chain("A", tasks) == []

    def test_validate_dependencies(self, resolver):
        tasks = [
            make_task("A", dependencies=["A", "missing"]),
            make_task("B", dependencies=["C"]),
            make_task("C", dependencies=["B"]),
        ]
        problems = resolver.validate_dependencies(tasks)
        assert "Task A depends on itself" in problems
        assert "Task A depends on missing task missing" in problems
        assert "Circular dependency: B -> C -> B" in problems


class TestFindCycle:

    def test_acyclic(self):
        assert find_cycle({"a": ["b"], "b": ["c"], "c": []}) is None

    def test_cycle_path(self):
        assert find_cycle({"a": ["b"], "b": ["c"], "c": ["b"]}) == ["b", "c", "b"]
