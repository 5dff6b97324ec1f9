import pytest
from conftest import build_exam
from examhub.core.errors import Forbidden, InvalidInput, InvalidState, NotFound
from examhub.models.orm import Answer, ExamAttempt
from examhub.services import attempts as attempt_svc
from examhub.services import grading_requests as svc


@pytest.fixture
def completed(db, student, exam_setup):
    exam, mc, tf, essay = exam_setup
    attempt, _ = attempt_svc.start_attempt(db, exam.id, student.id)
    mc_ans, _ = attempt_svc.submit_answer(db, attempt.id, mc.id, "a", student.id)
    tf_ans, _ = attempt_svc.submit_answer(db, attempt.id, tf.id, "true", student.id)
    attempt_svc.complete_attempt(db, attempt.id, student.id)
    return attempt, mc_ans, tf_ans


def test_request_review_by_owner_only(db, student, other_student, completed):
    _, mc_ans, _ = completed
    req = svc.request_review(db, mc_ans.id, student.id, "I think b was also right")
    assert req.status == "pending" and req.resolved_at is None
    with pytest.raises(Forbidden):
        svc.request_review(db, mc_ans.id, other_student.id)
    with pytest.raises(NotFound):
        svc.request_review(db, 9999, student.id)


def test_approve_with_score_propagates_to_attempt(db, teacher, student, completed):
    attempt, mc_ans, _ = completed
    assert db.get(ExamAttempt, attempt.id).score == 1
    req = svc.request_review(db, mc_ans.id, student.id)

    resolved = svc.resolve_request(db, req.id, teacher.id, "approved", "Fair point", score=2)
    assert resolved.status == "approved" and resolved.resolved_at is not None
    db.expire_all()
    answer = db.get(Answer, mc_ans.id)
    assert answer.score == 2 and answer.is_correct and answer.manually_graded
    assert db.get(ExamAttempt, attempt.id).score == 3


def test_approve_zero_marks_incorrect(db, teacher, student, completed):
    attempt, _, tf_ans = completed
    req = svc.request_review(db, tf_ans.id, student.id)
    svc.resolve_request(db, req.id, teacher.id, "approved", score=0)
    db.expire_all()
    assert db.get(Answer, tf_ans.id).is_correct is False
    assert db.get(ExamAttempt, attempt.id).score == 0


def test_reject_has_no_side_effects(db, teacher, student, completed):
    attempt, mc_ans, _ = completed
    req = svc.request_review(db, mc_ans.id, student.id)
    assert svc.resolve_request(db, req.id, teacher.id, "rejected", "No", score=2).status == "rejected"
    db.expire_all()
    assert db.get(Answer, mc_ans.id).score == 0
    assert db.get(ExamAttempt, attempt.id).score == 1


def test_approve_without_score_keeps_grade(db, teacher, student, completed):
    _, mc_ans, _ = completed
    req = svc.request_review(db, mc_ans.id, student.id)
    svc.resolve_request(db, req.id, teacher.id, "approved")
    db.expire_all()
    assert db.get(Answer, mc_ans.id).score == 0


@pytest.mark.parametrize("decision,score", [("pending", None), ("maybe", None), ("approved", 3), ("approved", -1)])
def test_resolve_rejects_bad_input_without_mutating(db, teacher, student, completed, decision, score):
    _, mc_ans, _ = completed
    req = svc.request_review(db, mc_ans.id, student.id)
    with pytest.raises(InvalidInput):
        svc.resolve_request(db, req.id, teacher.id, decision, score=score)
    db.expire_all()
    assert svc.list_for_student(db, student.id)[0].status == "pending"


def test_resolve_only_by_exam_owner(db, student, make_user, completed):
    _, mc_ans, _ = completed
    req = svc.request_review(db, mc_ans.id, student.id)
    with pytest.raises(Forbidden):
        svc.resolve_request(db, req.id, make_user("t9", "teacher").id, "approved", score=1)
    with pytest.raises(NotFound):
        svc.resolve_request(db, 777, make_user("t10", "teacher").id, "approved")


def test_resolve_twice_is_invalid_state(db, teacher, student, completed):
    _, mc_ans, _ = completed
    req = svc.request_review(db, mc_ans.id, student.id)
    svc.resolve_request(db, req.id, teacher.id, "rejected")
    with pytest.raises(InvalidState):
        svc.resolve_request(db, req.id, teacher.id, "approved", score=2)
    db.expire_all()
    assert db.get(Answer, mc_ans.id).score == 0


def test_pending_list_is_scoped_to_owning_teacher(db, teacher, student, make_user, completed):
    _, mc_ans, tf_ans = completed
    rival = make_user("rival", "teacher")
    rival_exam, rival_mc, *_ = build_exam(db, rival)
    attempt, _ = attempt_svc.start_attempt(db, rival_exam.id, student.id)
    rival_ans, _ = attempt_svc.submit_answer(db, attempt.id, rival_mc.id, "a", student.id)

    r1 = svc.request_review(db, mc_ans.id, student.id)
    r2 = svc.request_review(db, tf_ans.id, student.id)
    svc.request_review(db, rival_ans.id, student.id)
    svc.resolve_request(db, r2.id, teacher.id, "rejected")

    items = svc.list_pending_for_teacher(db, teacher.id)
    assert [i.request.id for i in items] == [r1.id]
    item = items[0]
    assert item.answer.id == mc_ans.id and item.student.id == student.id and item.question.points == 2
    assert len(svc.list_pending_for_teacher(db, rival.id)) == 1
    assert len(svc.list_for_student(db, student.id)) == 3
