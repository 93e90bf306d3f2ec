"""Tests for the task filter engine and facets."""
from labgantt.app.filters import (
    Facets,
    FilterState,
    filter_tasks,
    known_labels,
    sort_tasks,
    unique_assignees,
    unique_labels,
    unique_milestones,
)
from labgantt.gitlab.models import Label, Milestone, User


class TestFilterTasks:
    def test_closed_tasks_hidden_by_default(self, make_task):
        tasks = [make_task(1), make_task(2, closed=True)]
        assert [t.id for t in filter_tasks(tasks, FilterState())] == [1]
        assert [t.id for t in filter_tasks(tasks, FilterState(show_closed=True))] == [1, 2]

    def test_include_keeps_any_matching_label(self, make_task):
        tasks = [make_task(1, labels=["bug"]), make_task(2, labels=["feature"]), make_task(3)]
        state = FilterState(include_labels=("bug", "feature"))
        assert [t.id for t in filter_tasks(tasks, state)] == [1, 2]

    def test_exclude_beats_include(self, make_task):
        tasks = [make_task(1, labels=["bug", "wontfix"]), make_task(2, labels=["bug"])]
        state = FilterState(include_labels=("bug",), exclude_labels=("wontfix",))
        assert [t.id for t in filter_tasks(tasks, state)] == [2]

    def test_assignee_and_milestone_rules(self, make_task, alice, bob, sprint):
        tasks = [
            make_task(1, assignees=[alice], milestone=sprint),
            make_task(2, assignees=[bob], milestone=sprint),
            make_task(3, assignees=[alice]),
        ]
        state = FilterState(assignee_ids=(alice.id,), milestone_ids=(sprint.id,))
        assert [t.id for t in filter_tasks(tasks, state)] == [1]

    def test_filter_is_idempotent_and_order_preserving(self, make_task):
        tasks = [make_task(3, labels=["a"]), make_task(1, labels=["b"]), make_task(2, labels=["a"])]
        state = FilterState(include_labels=("a",))
        once = filter_tasks(tasks, state)
        assert [t.id for t in once] == [3, 2]
        assert filter_tasks(once, state) == once

    def test_empty_state_keeps_open_tasks(self, make_task):
        tasks = [make_task(i) for i in range(5)]
        assert filter_tasks(tasks, FilterState()) == tasks


class TestFilterState:
    def test_cleared_keeps_show_closed(self):
        state = FilterState(include_labels=("a",), status_labels=("doing",), assignee_ids=(1,), show_closed=True)
        cleared = state.cleared()
        assert cleared == FilterState(show_closed=True)
        assert not cleared.is_active()
        assert state.is_active()

    def test_with_changes(self):
        state = FilterState().with_changes(exclude_labels=("x",))
        assert state.exclude_labels == ("x",)


class TestFacetsAndSorting:
    def test_sort_by_start_with_unparseable_last(self, make_task):
        tasks = [
            make_task(1, start="not a date"),
            make_task(2, start="2024-03-01T00:00:00Z"),
            make_task(3, start="2024-01-01T00:00:00Z"),
            make_task(4, start="2024-01-01T00:00:00Z"),
        ]
        assert [t.id for t in sort_tasks(tasks)] == [3, 4, 2, 1]

    def test_unique_labels_sorted_case_sensitive(self, make_task):
        tasks = [make_task(1, labels=["b", "A"]), make_task(2, labels=["a", "b"])]
        assert unique_labels(tasks) == ["A", "a", "b"]

    def test_unique_assignees_and_milestones(self, make_task):
        zed = User(id=3, name="Zed")
        amy = User(id=4, name="Amy")
        m1 = Milestone(id=1, title="Beta")
        m2 = Milestone(id=2, title="Alpha")
        tasks = [
            make_task(1, assignees=[zed, amy], milestone=m1),
            make_task(2, assignees=[amy], milestone=m2),
            make_task(3, milestone=m1),
        ]
        assert [u.name for u in unique_assignees(tasks)] == ["Amy", "Zed"]
        assert [m.title for m in unique_milestones(tasks)] == ["Alpha", "Beta"]
        facets = Facets.from_tasks(tasks)
        assert facets.labels == []
        assert len(facets.assignees) == 2

    def test_known_labels_keep_first_colors(self, make_task):
        tasks = [
            make_task(1, labels=[Label("doing", "#ff0000")]),
            make_task(2, labels=[Label("doing", "#00ff00")]),
        ]
        catalog = known_labels(tasks)
        assert catalog["doing"].color == "#ff0000"
        assert "missing" not in catalog
