import asyncio
from datetime import datetime, timezone

import pytest

from conftest import FakeGenerator, make_quiz, make_user
from notequiz.errors import (
	AlreadyCompleted,
	ConflictError,
	DataIntegrityError,
	ExternalServiceError,
	MissingApiKeyError,
	NotFound,
	Unauthenticated,
	Unauthorized,
)
from notequiz.guard import authorize_quiz
from notequiz.key_store import store_api_key
from notequiz.models import Quiz, QuizResult
from notequiz.projection import get_results
from notequiz.quizzes import advance_question, delete_quizzes, load_progress, reset_quiz, retreat_question
from notequiz.scoring import complete_quiz


@pytest.fixture
def alice_user(db):
	user = make_user(db, "alice")
	store_api_key(db, "alice", "sk-alice")
	return user


@pytest.fixture
def bob_user(db):
	return make_user(db, "bob")


@pytest.fixture
def quiz(db, alice_user):
	return make_quiz(db, owner="alice")


def _complete(db, quiz_id, user, option, generator=None):
	generator = generator or FakeGenerator()
	return asyncio.run(complete_quiz(db, quiz_id, user, option, generator.factory))


def _snapshot(db, quiz_id):
	db.expire_all()
	quiz = db.get(Quiz, quiz_id)
	return dict(quiz.progress), quiz.is_completed


def test_guard_returns_quiz_and_user(db, quiz, alice_user):
	access = authorize_quiz(db, quiz.id, alice_user)
	assert access.quiz.id == quiz.id
	assert access.user == alice_user


def test_guard_reports_missing_quiz_before_missing_user(db):
	with pytest.raises(NotFound):
		authorize_quiz(db, "missing", None)


def test_guard_requires_a_user(db, quiz):
	with pytest.raises(Unauthenticated):
		authorize_quiz(db, quiz.id, None)


def test_advance_by_other_user_is_rejected_without_changes(db, quiz, bob_user):
	before = _snapshot(db, quiz.id)
	with pytest.raises(Unauthorized):
		advance_question(db, quiz.id, bob_user, "a")
	assert _snapshot(db, quiz.id) == before


@pytest.mark.parametrize("operation", ["retreat", "complete", "results", "reset"])
def test_other_operations_by_other_user_are_rejected(db, quiz, alice_user, bob_user, operation):
	advance_question(db, quiz.id, alice_user, "a")
	before = _snapshot(db, quiz.id)
	with pytest.raises(Unauthorized):
		if operation == "retreat":
			retreat_question(db, quiz.id, bob_user)
		elif operation == "complete":
			_complete(db, quiz.id, bob_user, "a")
		elif operation == "results":
			get_results(db, quiz.id, bob_user)
		else:
			reset_quiz(db, quiz.id, bob_user)
	assert _snapshot(db, quiz.id) == before


def test_advance_and_retreat_persist_progress(db, quiz, alice_user):
	answer, progress = advance_question(db, quiz.id, alice_user, "a")
	assert answer.question_id == "q1"
	advance_question(db, quiz.id, alice_user, "b")
	question_id, progress = retreat_question(db, quiz.id, alice_user)
	assert question_id == "q2"
	db.expire_all()
	stored = load_progress(db.get(Quiz, quiz.id))
	assert stored.current_question_index == 1
	assert [(a.question_id, a.selected_option_id) for a in stored.answers] == [("q1", "a"), ("q2", "b")]
	assert stored.version == 3


def test_retreat_at_start_writes_nothing(db, quiz, alice_user):
	before = _snapshot(db, quiz.id)
	question_id, _ = retreat_question(db, quiz.id, alice_user)
	assert question_id == "q1"
	assert _snapshot(db, quiz.id) == before


def test_stale_expected_version_is_a_conflict(db, quiz, alice_user):
	_, progress = advance_question(db, quiz.id, alice_user, "a", expected_version=0)
	assert progress.version == 1
	before = _snapshot(db, quiz.id)
	with pytest.raises(ConflictError):
		advance_question(db, quiz.id, alice_user, "b", expected_version=0)
	with pytest.raises(ConflictError):
		retreat_question(db, quiz.id, alice_user, expected_version=0)
	assert _snapshot(db, quiz.id) == before


def test_stale_session_cannot_overwrite_newer_progress(db, session_factory, quiz, alice_user):
	other = session_factory()
	try:
		loaded = db.get(Quiz, quiz.id)
		assert load_progress(loaded).version == 0
		advance_question(other, quiz.id, alice_user, "a", expected_version=0)
	finally:
		other.close()

	with pytest.raises(ConflictError):
		advance_question(db, quiz.id, alice_user, "b", expected_version=0)
	db.expire_all()
	stored = load_progress(db.get(Quiz, quiz.id))
	assert stored.version == 1
	assert [(a.question_id, a.selected_option_id) for a in stored.answers] == [("q1", "a")]


def test_stale_session_without_version_is_last_write_wins(db, session_factory, quiz, alice_user):
	other = session_factory()
	try:
		assert load_progress(db.get(Quiz, quiz.id)).current_question_index == 0
		advance_question(other, quiz.id, alice_user, "a")
	finally:
		other.close()

	_, progress = advance_question(db, quiz.id, alice_user, "b")
	assert progress.version == 2
	assert [(a.question_id, a.selected_option_id) for a in progress.answers] == [("q1", "b")]


def test_stale_session_sees_completion(db, session_factory, quiz, alice_user):
	other = session_factory()
	try:
		assert db.get(Quiz, quiz.id).is_completed is False
		_complete(other, quiz.id, alice_user, "a")
	finally:
		other.close()

	with pytest.raises(AlreadyCompleted):
		advance_question(db, quiz.id, alice_user, "b")


def test_scenario_a_completion(db, quiz, alice_user):
	advance_question(db, quiz.id, alice_user, "a")
	advance_question(db, quiz.id, alice_user, "b")
	advance_question(db, quiz.id, alice_user, "a")
	generator = FakeGenerator()
	result_id = _complete(db, quiz.id, alice_user, "a", generator)

	db.expire_all()
	result = db.get(QuizResult, result_id)
	assert result.correct_count == 2
	assert result.score == 67
	assert result.total_questions == 3
	assert result.incorrect_question_ids == {"q2": True}
	assert result.feedback == generator.feedback
	assert [a["question_id"] for a in result.answers] == ["q1", "q2", "q3"]
	assert db.get(Quiz, quiz.id).is_completed is True
	assert generator.api_keys == ["sk-alice"]
	assert generator.closed == 1

	(bundle,) = generator.feedback_calls
	assert (bundle.score, bundle.correct_count, bundle.total) == (67, 2, 3)
	assert bundle.title == quiz.title


def test_completion_records_the_final_answer(db, quiz, alice_user):
	advance_question(db, quiz.id, alice_user, "a")
	advance_question(db, quiz.id, alice_user, "a")
	_complete(db, quiz.id, alice_user, "b")
	db.expire_all()
	progress = load_progress(db.get(Quiz, quiz.id))
	assert progress.answers[-1].question_id == "q3"
	assert progress.answers[-1].selected_option_id == "b"


def test_second_completion_is_rejected(db, quiz, alice_user):
	_complete(db, quiz.id, alice_user, "a")
	with pytest.raises(AlreadyCompleted):
		_complete(db, quiz.id, alice_user, "a")
	assert db.query(QuizResult).filter(QuizResult.quiz_id == quiz.id).count() == 1


def test_completed_quiz_is_frozen_for_navigation(db, quiz, alice_user):
	_complete(db, quiz.id, alice_user, "a")
	with pytest.raises(AlreadyCompleted):
		advance_question(db, quiz.id, alice_user, "a")
	with pytest.raises(AlreadyCompleted):
		retreat_question(db, quiz.id, alice_user)


def test_feedback_failure_stores_nothing(db, quiz, alice_user):
	advance_question(db, quiz.id, alice_user, "a")
	before = _snapshot(db, quiz.id)
	generator = FakeGenerator()
	generator.error = ExternalServiceError("model unavailable")
	with pytest.raises(ExternalServiceError):
		_complete(db, quiz.id, alice_user, "b", generator)
	assert _snapshot(db, quiz.id) == before
	assert db.query(QuizResult).count() == 0
	assert generator.closed == 1


def test_completion_without_api_key_fails_before_scoring(db, bob_user):
	quiz = make_quiz(db, owner="bob")
	generator = FakeGenerator()
	with pytest.raises(MissingApiKeyError):
		_complete(db, quiz.id, bob_user, "a", generator)
	assert generator.feedback_calls == []
	assert db.query(QuizResult).count() == 0


def test_corrupted_answers_raise_integrity_error(db, quiz, alice_user):
	progress = dict(quiz.progress)
	progress["answers"] = [{"question_id": "deleted-question", "selected_option_id": "a"}]
	quiz.progress = progress
	db.commit()
	with pytest.raises(DataIntegrityError):
		_complete(db, quiz.id, alice_user, "a")
	assert db.query(QuizResult).count() == 0


def test_results_join_matches_stored_correctness(db, quiz, alice_user):
	assert get_results(db, quiz.id, alice_user) is None
	advance_question(db, quiz.id, alice_user, "b")
	advance_question(db, quiz.id, alice_user, "a")
	_complete(db, quiz.id, alice_user, "a")

	view = get_results(db, quiz.id, alice_user)
	result = db.query(QuizResult).filter(QuizResult.quiz_id == quiz.id).one()
	assert view.score == 67
	assert view.result_id == result.id
	for review in view.questions:
		assert review.is_correct is (review.id not in result.incorrect_question_ids)
		assert review.correct_option_id == "a"
	assert [r.user_selected_id for r in view.questions] == ["b", "a", "a"]


def test_results_use_stored_correctness_not_options(db, quiz, alice_user):
	_complete(db, quiz.id, alice_user, "a")
	result = db.query(QuizResult).filter(QuizResult.quiz_id == quiz.id).one()
	result.incorrect_question_ids = {"q1": True}
	db.commit()
	view = get_results(db, quiz.id, alice_user)
	assert [r.is_correct for r in view.questions] == [False, True, True]


def test_reset_clears_result_and_progress(db, quiz, alice_user):
	advance_question(db, quiz.id, alice_user, "a")
	_complete(db, quiz.id, alice_user, "a")
	completed = db.get(Quiz, quiz.id)
	completed_progress = dict(completed.progress)
	completed_progress["last_updated"] = "2020-01-01T00:00:00Z"
	completed.progress = completed_progress
	db.commit()

	reset_quiz(db, quiz.id, alice_user)

	db.expire_all()
	stored = db.get(Quiz, quiz.id)
	progress = load_progress(stored)
	assert stored.is_completed is False
	assert progress.current_question_index == 0
	assert progress.answers == []
	assert progress.last_updated > datetime(2020, 1, 1, tzinfo=timezone.utc)
	assert db.query(QuizResult).filter(QuizResult.quiz_id == quiz.id).count() == 0
	# The attempt can be completed again
	_complete(db, quiz.id, alice_user, "a")


def test_reset_bumps_version(db, quiz, alice_user):
	_, progress = advance_question(db, quiz.id, alice_user, "a")
	reset_quiz(db, quiz.id, alice_user)
	db.expire_all()
	assert load_progress(db.get(Quiz, quiz.id)).version == progress.version + 1


def test_delete_quizzes_is_all_or_nothing(db, quiz, alice_user, bob_user):
	other = make_quiz(db, owner="bob")
	with pytest.raises(Unauthorized):
		delete_quizzes(db, [quiz.id, other.id], alice_user)
	assert db.get(Quiz, quiz.id) is not None

	_complete(db, quiz.id, alice_user, "a")
	delete_quizzes(db, [quiz.id], alice_user)
	db.expire_all()
	assert db.get(Quiz, quiz.id) is None
	assert db.query(QuizResult).count() == 0
	assert db.get(Quiz, other.id) is not None
