from concurrent.futures import ThreadPoolExecutor

import pytest

from common.errors import ReviewClaimConflict, ReviewStateError
from conftest import make_submission
from ingestion.hash_utils import content_hash
from resolution.review import ReviewWorkflow, publish_to_catalog
from storage import repository as repo
from storage.db import session_scope


def _submission(**kwargs):
    return make_submission(
        "Apple Tasting", "Compare three apple varieties.", submission_id="", grade_levels=["1"], **kwargs
    )


@pytest.fixture
def workflow(session_factory):
    return ReviewWorkflow(session_factory, publisher=publish_to_catalog)


def _row(factory, submission_id):
    with session_scope(factory) as session:
        return repo.get_submission(session, submission_id)


def test_happy_path_publishes_lesson(session_factory, workflow):
    sid = workflow.submit("teacher-1", _submission())
    assert workflow.status(sid) == "submitted"

    workflow.start_review(sid, "rev-1")
    row = _row(session_factory, sid)
    assert row.status == "in_review"
    assert row.reviewer_id == "rev-1"
    assert row.review_started_at is not None

    workflow.approve(sid, "rev-1", notes="looks good")
    assert workflow.status(sid) == "approved"
    with session_scope(session_factory) as session:
        lessons = repo.get_lessons(session, [sid])
        assert lessons[sid].title == "Apple Tasting"
        assert lessons[sid].content_hash == content_hash("Compare three apple varieties.")


def test_second_reviewer_cannot_claim(workflow):
    sid = workflow.submit("teacher-1", _submission())
    workflow.start_review(sid, "rev-1")
    with pytest.raises(ReviewClaimConflict):
        workflow.start_review(sid, "rev-2")
    with pytest.raises(ReviewClaimConflict):
        workflow.approve(sid, "rev-2")
    assert workflow.status(sid) == "in_review"


def test_concurrent_claims_have_one_winner(workflow):
    sid = workflow.submit("teacher-1", _submission())

    def claim(reviewer):
        try:
            workflow.start_review(sid, reviewer)
            return reviewer
        except ReviewClaimConflict:
            return None

    with ThreadPoolExecutor(max_workers=4) as pool:
        winners = [r for r in pool.map(claim, ["r1", "r2", "r3", "r4"]) if r]
    assert len(winners) == 1


def test_approved_is_terminal(workflow):
    sid = workflow.submit("teacher-1", _submission())
    workflow.start_review(sid, "rev-1")
    workflow.approve(sid, "rev-1")

    with pytest.raises(ReviewStateError) as excinfo:
        workflow.start_review(sid, "rev-1")
    assert excinfo.type is ReviewStateError
    with pytest.raises(ReviewStateError):
        workflow.request_revision(sid, "rev-1", "too late")
    with pytest.raises(ReviewStateError):
        workflow.resubmit(sid, "teacher-1", _submission())


def test_revision_cycle_keeps_identity(session_factory, workflow):
    sid = workflow.submit("teacher-1", _submission())
    workflow.start_review(sid, "rev-1")
    workflow.request_revision(sid, "rev-1", "add a tasting chart")
    assert workflow.status(sid) == "needs_revision"
    old_hash = _row(session_factory, sid).content_hash

    with pytest.raises(ReviewStateError):
        workflow.resubmit(sid, "someone-else", _submission())

    revised = make_submission("Apple Tasting", "Compare apples and chart the results.", submission_id="")
    workflow.resubmit(sid, "teacher-1", revised)

    row = _row(session_factory, sid)
    assert row.status == "submitted"
    assert row.revision_count == 1
    assert row.reviewer_id is None
    assert row.review_notes == "add a tasting chart"
    assert row.content_hash != old_hash
    assert row.content_hash == content_hash("Compare apples and chart the results.")

    # The same submission goes back through review
    workflow.start_review(sid, "rev-2")
    assert workflow.status(sid) == "in_review"


def test_cannot_approve_unclaimed_submission(workflow):
    sid = workflow.submit("teacher-1", _submission())
    with pytest.raises(ReviewStateError) as excinfo:
        workflow.approve(sid, "rev-1")
    assert excinfo.type is ReviewStateError


def test_unknown_submission(workflow):
    with pytest.raises(ReviewStateError):
        workflow.status("missing")
    with pytest.raises(ReviewStateError):
        workflow.start_review("missing", "rev-1")


def test_update_submission_publishes_over_target_lesson(session_factory, workflow, catalog):
    sid = workflow.submit("teacher-1", _submission(), updates_lesson_id="L-soup")
    workflow.start_review(sid, "rev-1")
    workflow.approve(sid, "rev-1")
    with session_scope(session_factory) as session:
        lessons = repo.get_lessons(session, ["L-soup", sid])
    assert set(lessons) == {"L-soup"}
    assert lessons["L-soup"].title == "Apple Tasting"
