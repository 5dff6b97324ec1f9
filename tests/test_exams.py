import pytest
from conftest import build_exam, identity
from examhub.core.errors import Forbidden, InvalidInput, InvalidState, NotFound
from examhub.services import exams as svc
from examhub.services.exams import SHARE_CODE_ALPHABET


def test_create_exam_defaults_to_draft_with_share_code(db, teacher):
    exam = svc.create_exam(db, teacher.id, {"title": "Algebra", "subject": "Math", "duration": 45})
    assert exam.status == "draft"
    assert len(exam.share_code) == 6
    assert set(exam.share_code) <= set(SHARE_CODE_ALPHABET)


def test_share_codes_are_unique(db, teacher):
    codes = {svc.create_exam(db, teacher.id, {"title": f"E{i}", "subject": "S", "duration": 10}).share_code for i in range(25)}
    assert len(codes) == 25


def test_share_code_retries_on_collision(db, teacher, monkeypatch):
    first = svc.create_exam(db, teacher.id, {"title": "A", "subject": "S", "duration": 10})
    codes = iter([first.share_code, first.share_code, "ZZZZZZ"])
    monkeypatch.setattr(svc, "generate_share_code", lambda length=None: next(codes))
    assert svc.create_exam(db, teacher.id, {"title": "B", "subject": "S", "duration": 10}).share_code == "ZZZZZZ"


def test_create_exam_rejects_non_positive_duration(db, teacher):
    with pytest.raises(InvalidInput):
        svc.create_exam(db, teacher.id, {"title": "A", "subject": "S", "duration": 0})


@pytest.mark.parametrize("path,ok", [
    (["active"], True),
    (["active", "archived"], True),
    (["active", "archived", "active"], True),
    (["archived"], False),
    (["active", "draft"], False),
])
def test_status_transitions(db, teacher, path, ok):
    exam = svc.create_exam(db, teacher.id, {"title": "T", "subject": "S", "duration": 10})
    if ok:
        for status in path:
            exam = svc.update_exam(db, exam.id, teacher.id, {"status": status})
        assert exam.status == path[-1]
    else:
        with pytest.raises(InvalidState):
            for status in path:
                svc.update_exam(db, exam.id, teacher.id, {"status": status})


def test_same_status_is_a_no_op(db, teacher):
    exam = svc.create_exam(db, teacher.id, {"title": "T", "subject": "S", "duration": 10})
    assert svc.update_exam(db, exam.id, teacher.id, {"status": "draft"}).status == "draft"


def test_only_owner_can_update_or_delete(db, teacher, make_user):
    intruder = make_user("intruder", "teacher")
    exam = svc.create_exam(db, teacher.id, {"title": "T", "subject": "S", "duration": 10})
    with pytest.raises(Forbidden):
        svc.update_exam(db, exam.id, intruder.id, {"title": "Mine"})
    with pytest.raises(Forbidden):
        svc.delete_exam(db, exam.id, intruder.id)
    with pytest.raises(NotFound):
        svc.delete_exam(db, 9999, teacher.id)


def test_visibility(db, teacher, student, make_user):
    draft = svc.create_exam(db, teacher.id, {"title": "Draft", "subject": "S", "duration": 10})
    active, *_ = build_exam(db, teacher)
    assert [e.id for e in svc.list_exams(db, identity(student))] == [active.id]
    assert {e.id for e in svc.list_exams(db, identity(teacher))} == {draft.id, active.id}
    with pytest.raises(Forbidden):
        svc.get_visible_exam(db, draft.id, identity(student))
    with pytest.raises(Forbidden):
        svc.get_visible_exam(db, active.id, identity(make_user("t2", "teacher")))


def test_share_code_lookup(db, teacher):
    exam, *_ = build_exam(db, teacher)
    assert svc.get_exam_by_share_code(db, exam.share_code.lower()).id == exam.id
    with pytest.raises(NotFound):
        svc.get_exam_by_share_code(db, "NOPE99")
    svc.update_exam(db, exam.id, teacher.id, {"status": "archived"})
    with pytest.raises(Forbidden):
        svc.get_exam_by_share_code(db, exam.share_code)


@pytest.mark.parametrize("data", [
    {"type": "multiple_choice", "text": "?", "options": [{"id": "a"}], "correct_answer": "a"},
    {"type": "multiple_choice", "text": "?", "options": [{"id": "a"}, {"id": "a"}], "correct_answer": "a"},
    {"type": "multiple_choice", "text": "?", "options": [{"id": "a"}, {"id": "b"}], "correct_answer": "c"},
    {"type": "true_false", "text": "?", "correct_answer": "yes"},
    {"type": "essay", "text": "?", "correct_answer": "free text"},
    {"type": "true_false", "text": "?", "points": 0, "correct_answer": "true"},
    {"type": "matching", "text": "?"},
])
def test_question_validation(db, teacher, data):
    exam = svc.create_exam(db, teacher.id, {"title": "T", "subject": "S", "duration": 10})
    with pytest.raises(InvalidInput):
        svc.create_question(db, exam.id, teacher.id, data)


def test_questions_ordered_by_order_then_id(db, teacher):
    exam = svc.create_exam(db, teacher.id, {"title": "T", "subject": "S", "duration": 10})
    second = svc.create_question(db, exam.id, teacher.id, {"type": "true_false", "text": "2", "order": 2, "correct_answer": "true"})
    first = svc.create_question(db, exam.id, teacher.id, {"type": "true_false", "text": "1", "order": 1, "correct_answer": "true"})
    tie = svc.create_question(db, exam.id, teacher.id, {"type": "true_false", "text": "1b", "order": 1, "correct_answer": "false"})
    assert [q.id for q in svc.list_questions(db, exam.id, identity(teacher))] == [first.id, tie.id, second.id]


def test_update_question_revalidates_merged_fields(db, teacher):
    exam, mc, tf, essay = build_exam(db, teacher)
    with pytest.raises(InvalidInput):
        svc.update_question(db, mc.id, teacher.id, {"correct_answer": "z"})
    updated = svc.update_question(db, tf.id, teacher.id, {"points": 4})
    assert updated.points == 4 and updated.correct_answer == "true"


def test_delete_exam_cascades(db, teacher):
    exam, mc, *_ = build_exam(db, teacher)
    svc.delete_exam(db, exam.id, teacher.id)
    db.expire_all()
    with pytest.raises(NotFound):
        svc.get_exam_or_404(db, exam.id)
    assert db.get(type(mc), mc.id) is None
