import copy
import json
import uuid

import pytest
from sqlmodel import select

from quizforce import models, repositories, services
from quizforce.utils.exam_loader import find_exam_files
from conftest import SAMPLE_EXAM


def as_bytes(doc):
    return json.dumps(doc).encode()


def test_import_creates_exam_in_order(db):
    res = services.ImportService(db).import_file(as_bytes(SAMPLE_EXAM), 'exam.json')
    assert res['created'] == 3
    assert res['errors'] == []
    exam = repositories.CatalogRepository(db).get_practice_exam(res['practice_exam_id'])
    assert exam.question_count == 3
    assert exam.passing_threshold_percentage == 65
    questions = repositories.QuestionRepository(db).with_answers_for_exam(exam.id)
    assert [q.question_number for q in questions] == [1, 2, 3]
    assert [q.difficulty_level for q in questions] == ['easy', 'medium', 'hard']
    assert [a.answer_letter for a in questions[1].answers] == ['A', 'B']
    assert questions[1].correct_answer_ids == (questions[1].answers[1].id,)
    assert questions[2].knowledge_area.name == 'Data Security'
    assert questions[2].knowledge_area.weight_percentage == 60


def test_invalid_questions_are_reported_and_skipped(db):
    doc = copy.deepcopy(SAMPLE_EXAM)
    doc['questions'].append({'question_text': 'No answers', 'knowledge_area': 'Data Security', 'answers': []})
    doc['questions'].append({
        'question_text': 'Nothing correct', 'knowledge_area': 'Data Security',
        'answers': [{'answer_text': 'a'}, {'answer_text': 'b'}],
    })
    doc['questions'].append({
        'question_text': 'Bad difficulty', 'knowledge_area': 'Data Security', 'difficulty_level': 'extreme',
        'answers': [{'answer_text': 'a', 'is_correct': True}],
    })
    res = services.ImportService(db).import_file(as_bytes(doc), 'exam.json')
    assert res['created'] == 3
    assert [e['index'] for e in res['errors']] == [3, 4, 5]


def test_multi_select_required_selections(db):
    doc = copy.deepcopy(SAMPLE_EXAM)
    doc['questions'] = [{
        'question_text': 'Pick two', 'knowledge_area': 'Data Security',
        'answers': [{'answer_text': 'a', 'is_correct': True}, {'answer_text': 'b', 'is_correct': True},
                    {'answer_text': 'c'}],
    }, {
        'question_text': 'Mismatch', 'knowledge_area': 'Data Security', 'required_selections': 3,
        'answers': [{'answer_text': 'a', 'is_correct': True}, {'answer_text': 'b'}],
    }]
    res = services.ImportService(db).import_file(as_bytes(doc), 'exam.json')
    assert res['created'] == 1
    assert 'required_selections' in res['errors'][0]['error']
    (question,) = repositories.QuestionRepository(db).with_answers_for_exam(res['practice_exam_id'])
    assert question.required_selections == 2


def test_dry_run_writes_nothing(db):
    svc = services.ImportService(db)
    res = svc.import_file(as_bytes(SAMPLE_EXAM), 'exam.json', dry_run=True)
    assert res['practice_exam_id'] is None
    assert res['valid'] == 3


@pytest.mark.parametrize('payload,filename', [
    (b'not json', 'exam.json'),
    (b'[]', 'exam.json'),
    (b'{"certification": {"name": "X"}, "questions": []}', 'exam.json'),
    (as_bytes(SAMPLE_EXAM), 'exam.csv'),
])
def test_invalid_documents_raise(db, payload, filename):
    with pytest.raises(ValueError):
        services.ImportService(db).import_file(payload, filename)


def test_find_exam_files(tmp_path):
    (tmp_path / 'admin').mkdir()
    (tmp_path / 'admin' / 'exam1.json').write_text('{}')
    (tmp_path / 'admin' / 'exam1_draft.json').write_text('{}')
    (tmp_path / 'dev').mkdir()
    (tmp_path / 'dev' / 'exam2.json').write_text('{}')
    (tmp_path / 'dev' / 'notes.txt').write_text('x')
    assert [f.name for f in find_exam_files(tmp_path)] == ['exam1.json', 'exam2.json']
    assert [f.name for f in find_exam_files(tmp_path, certification='dev')] == ['exam2.json']
    assert find_exam_files(tmp_path, certification='missing') == []


def test_admin_import_endpoint(client, make_user):
    _, learner = make_user()
    _, admin = make_user(role='admin')
    files = {'file': ('exam.json', as_bytes(SAMPLE_EXAM), 'application/json')}
    assert client.post('/admin/import', files=files, headers=learner).status_code == 403
    r = client.post('/admin/import', files=files, headers=admin)
    assert r.status_code == 200
    assert r.json()['created'] == 3
    bad = {'file': ('exam.json', b'{', 'application/json')}
    assert client.post('/admin/import', files=bad, headers=admin).status_code == 400


def renamed(doc):
    """Copy `doc` under a certification name no other test uses."""
    doc = copy.deepcopy(doc)
    doc['certification']['name'] = f"Cert {uuid.uuid4().hex}"
    return doc


def certifications_named(db, name):
    return db.exec(select(models.Certification).where(models.Certification.name == name)).all()


def test_non_string_knowledge_area_is_reported(client, make_user):
    _, admin = make_user(role='admin')
    doc = renamed(SAMPLE_EXAM)
    doc['questions'][2]['knowledge_area'] = ['Data Security']
    files = {'file': ('exam.json', as_bytes(doc), 'application/json')}
    r = client.post('/admin/import', files=files, headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()['created'] == 2
    assert [e['index'] for e in r.json()['errors']] == [2]
    assert 'knowledge_area' in r.json()['errors'][0]['error']


@pytest.mark.parametrize('field,value', [
    ('time_limit_minutes', 'ninety'),
    ('time_limit_minutes', 0),
    ('time_limit_minutes', True),
    ('passing_threshold_percentage', '65'),
])
def test_bad_exam_settings_write_nothing(db, field, value):
    doc = renamed(SAMPLE_EXAM)
    doc['practice_exam'][field] = value
    with pytest.raises(ValueError, match=field):
        services.ImportService(db).import_file(as_bytes(doc), 'exam.json')
    assert certifications_named(db, doc['certification']['name']) == []


@pytest.mark.parametrize('value', ['forty', [40], 140])
def test_bad_knowledge_area_weight_is_rejected(db, value):
    doc = renamed(SAMPLE_EXAM)
    doc['knowledge_areas'][0]['weight_percentage'] = value
    with pytest.raises(ValueError, match='weight_percentage'):
        services.ImportService(db).import_file(as_bytes(doc), 'exam.json')
    assert certifications_named(db, doc['certification']['name']) == []


def test_bad_exam_settings_return_400(client, make_user):
    _, admin = make_user(role='admin')
    doc = renamed(SAMPLE_EXAM)
    doc['practice_exam']['time_limit_minutes'] = 'ninety'
    files = {'file': ('exam.json', as_bytes(doc), 'application/json')}
    assert client.post('/admin/import', files=files, headers=admin).status_code == 400


def test_failed_write_rolls_back_everything(db, monkeypatch):
    doc = renamed(SAMPLE_EXAM)
    exams_before = len(db.exec(select(models.PracticeExam)).all())

    def failing_create(self, question, answers, commit=True):
        raise RuntimeError('disk full')

    monkeypatch.setattr(repositories.QuestionRepository, 'create', failing_create)
    with pytest.raises(RuntimeError):
        services.ImportService(db).import_file(as_bytes(doc), 'exam.json')
    # the certification and exam were flushed before the failure
    assert certifications_named(db, doc['certification']['name']) == []
    assert len(db.exec(select(models.PracticeExam)).all()) == exams_before
