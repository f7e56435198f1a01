from unittest.mock import patch

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from app.errors import NotFoundError
from app.services.cascade import CascadeStep, collect_subtree, run_cascade
from app.services.project import projects
from app.services.store import branches_store, projects_store


class TestCollectSubtree:
    def test_walks_until_frontier_is_empty(self) -> None:
        tree = {"a1": ["b1", "b2"], "b1": ["c1"], "c1": []}

        def fetch(frontier):
            return [child for node in frontier for child in tree.get(node, [])]

        assert collect_subtree(fetch, ["a1"]) == ["a1", "b1", "b2", "c1"]

    def test_stops_on_cycles(self) -> None:
        tree = {"a1": ["b1"], "b1": ["a1"]}

        def fetch(frontier):
            return [child for node in frontier for child in tree.get(node, [])]

        assert collect_subtree(fetch, ["a1"]) == ["a1", "b1"]

    def test_roots_deduplicated(self) -> None:
        assert collect_subtree(lambda frontier: [], ["a1", "a1"]) == ["a1"]


class TestRunCascade:
    def test_runs_in_order_and_commits_each_step(self, db_session) -> None:
        calls = []
        steps = [
            CascadeStep("one", lambda db: calls.append("one") or 2),
            CascadeStep("two", lambda db: calls.append("two") or 3),
        ]
        assert run_cascade(db_session, steps) == {"one": 2, "two": 3}
        assert calls == ["one", "two"]

    def test_failing_step_stops_and_is_named(self, db_session) -> None:
        calls = []

        def broken(db):
            raise OperationalError("DELETE", {}, Exception("disk I/O error"))

        steps = [
            CascadeStep("webhooks", lambda db: calls.append("webhooks") or 0),
            CascadeStep("elements", broken),
            CascadeStep("branches", lambda db: calls.append("branches") or 0),
        ]
        with pytest.raises(HTTPException) as exc:
            run_cascade(db_session, steps)
        assert exc.value.status_code == 500
        assert "[elements]" in exc.value.detail
        assert calls == ["webhooks"]

    def test_engine_error_keeps_ids(self, db_session) -> None:
        def missing(db):
            raise NotFoundError("gone", ids=["council"])

        with pytest.raises(HTTPException) as exc:
            run_cascade(db_session, [CascadeStep("orgs", missing)])
        assert exc.value.ids == ["council"]

    def test_count_mismatch_fails_step(self, db_session) -> None:
        calls = []
        steps = [
            CascadeStep("branches", lambda db: 1, expected=2),
            CascadeStep("projects", lambda db: calls.append("projects") or 1),
        ]
        with pytest.raises(HTTPException) as exc:
            run_cascade(db_session, steps)
        assert exc.value.status_code == 500
        assert "[branches]" in exc.value.detail
        assert "expected to affect 2 documents but affected 1" in exc.value.detail
        assert calls == []

    def test_matching_count_passes(self, db_session) -> None:
        steps = [CascadeStep("orgs", lambda db: 3, expected=3)]
        assert run_cascade(db_session, steps) == {"orgs": 3}


class TestCascadeCounts:
    def test_project_remove_checks_branch_count(
        self, db_session, admin, project
    ) -> None:
        with patch.object(branches_store, "delete_many", return_value=0):
            with pytest.raises(HTTPException) as exc:
                projects.remove(db_session, admin, "council", "prtlgn")
        assert "[branches]" in exc.value.detail
        assert projects_store.find_one(db_session, "council:prtlgn") is not None
