from __future__ import annotations
import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AlreadyCompleted, ConflictError, DataIntegrityError, QuizValidationError, Unauthenticated
from .generation import GeneratorFactory, assign_ids
from .guard import authorize_quiz
from .key_store import resolve_api_key
from .models import Quiz, QuizResult
from .progress import advance_progress, initial_progress, retreat_progress
from .routers.auth import User
from .schemas import Answer, CreateQuizRequest, Progress, Question, QuizOut, QuizSummary
from .settings import settings

logger = logging.getLogger(__name__)


def load_questions(quiz: Quiz) -> List[Question]:
	try:
		return [Question.model_validate(q) for q in quiz.questions or []]
	except ValidationError as err:
		logger.error("Quiz %s has malformed questions", quiz.id)
		raise DataIntegrityError() from err


def load_progress(quiz: Quiz) -> Progress:
	if not quiz.progress:
		return initial_progress(version=quiz.version or 0)
	try:
		progress = Progress.model_validate(quiz.progress)
	except ValidationError as err:
		logger.error("Quiz %s has malformed progress", quiz.id)
		raise DataIntegrityError() from err
	# The column is authoritative
	progress.version = quiz.version or 0
	return progress


def store_progress(quiz: Quiz, progress: Progress) -> None:
	# Assign a fresh dict so SQLAlchemy sees the JSON column change
	quiz.progress = progress.model_dump(mode="json")
	quiz.version = progress.version


def quiz_to_out(quiz: Quiz) -> QuizOut:
	return QuizOut(
		id=quiz.id,
		user_id=quiz.user_id,
		title=quiz.title,
		notes=quiz.notes,
		context=quiz.context,
		num_questions=quiz.num_questions,
		options_per_question=quiz.options_per_question,
		questions=load_questions(quiz),
		progress=load_progress(quiz),
		is_completed=bool(quiz.is_completed),
		created_at=quiz.created_at,
	)


def _check_mutable(quiz: Quiz, progress: Progress, expected_version: Optional[int]) -> None:
	if quiz.is_completed:
		raise AlreadyCompleted()
	if expected_version is not None and expected_version != progress.version:
		raise ConflictError()


def _write_progress(db: Session, quiz: Quiz, progress: Progress, expected_version: Optional[int]) -> Progress:
	"""Persist navigation progress with one conditional UPDATE and commit.

	The row only changes while the quiz is still open and, when
	``expected_version`` is given, still at that version. Without it the write
	is last-write-wins and the version is bumped in SQL.
	"""
	stmt = update(Quiz).where(Quiz.id == quiz.id, Quiz.is_completed.is_(False))
	if expected_version is not None:
		stmt = stmt.where(Quiz.version == expected_version)
	stmt = stmt.values(progress=progress.model_dump(mode="json"), version=Quiz.version + 1)
	res = db.execute(stmt.execution_options(synchronize_session=False))
	if res.rowcount != 1:
		db.rollback()
		db.refresh(quiz)
		if quiz.is_completed:
			raise AlreadyCompleted()
		logger.info("Quiz %s changed concurrently; expected version %s, found %s", quiz.id, expected_version, quiz.version)
		raise ConflictError()
	db.commit()
	return load_progress(quiz)


def _validate_create_request(req: CreateQuizRequest) -> None:
	if not (req.notes or "").strip():
		raise QuizValidationError("notes are required")
	if not 1 <= req.num_questions <= settings.max_questions:
		raise QuizValidationError(f"num_questions must be between 1 and {settings.max_questions}")
	low, high = settings.min_options_per_question, settings.max_options_per_question
	if not low <= req.options_per_question <= high:
		raise QuizValidationError(f"options_per_question must be between {low} and {high}")


async def create_quiz(db: Session, user: Optional[User], req: CreateQuizRequest, generator_factory: GeneratorFactory) -> str:
	if user is None:
		raise Unauthenticated("Unauthorized. Please login to create a quiz.")
	_validate_create_request(req)
	api_key = resolve_api_key(db, user.username)
	context = (req.context or "").strip() or None
	generator = generator_factory(api_key)
	try:
		generated = await generator.generate_quiz(req.notes, context, req.num_questions, req.options_per_question)
	finally:
		await generator.aclose()
	questions = assign_ids(generated)
	quiz = Quiz(
		user_id=user.username,
		title=generated.title.strip(),
		notes=req.notes,
		context=context,
		num_questions=req.num_questions,
		options_per_question=req.options_per_question,
		questions=[q.model_dump(mode="json") for q in questions],
		progress=initial_progress().model_dump(mode="json"),
		is_completed=False,
	)
	db.add(quiz)
	db.commit()
	logger.info("Created quiz %s for user %s with %d questions", quiz.id, user.username, len(questions))
	return quiz.id


def get_quiz(db: Session, quiz_id: str, user: Optional[User]) -> QuizOut:
	access = authorize_quiz(db, quiz_id, user)
	return quiz_to_out(access.quiz)


def list_quizzes(db: Session, user: Optional[User]) -> List[QuizSummary]:
	if user is None:
		return []
	rows = (
		db.query(Quiz)
		.filter(Quiz.user_id == user.username)
		.order_by(Quiz.created_at.desc())
		.all()
	)
	items: List[QuizSummary] = []
	for quiz in rows:
		progress = load_progress(quiz)
		items.append(QuizSummary(
			id=quiz.id,
			title=quiz.title,
			created_at=quiz.created_at,
			progress_count=sum(1 for a in progress.answers if a.selected_option_id is not None),
			total_questions=len(quiz.questions or []),
			is_completed=bool(quiz.is_completed),
		))
	return items


def advance_question(
	db: Session,
	quiz_id: str,
	user: Optional[User],
	selected_option_id: str,
	*,
	expected_version: Optional[int] = None,
) -> Tuple[Answer, Progress]:
	quiz = authorize_quiz(db, quiz_id, user).quiz
	progress = load_progress(quiz)
	_check_mutable(quiz, progress, expected_version)
	new_progress, answer = advance_progress(progress, load_questions(quiz), selected_option_id)
	new_progress = _write_progress(db, quiz, new_progress, expected_version)
	logger.info("Quiz %s advanced to question %d", quiz_id, new_progress.current_question_index)
	return answer, new_progress


def retreat_question(
	db: Session,
	quiz_id: str,
	user: Optional[User],
	*,
	expected_version: Optional[int] = None,
) -> Tuple[str, Progress]:
	quiz = authorize_quiz(db, quiz_id, user).quiz
	progress = load_progress(quiz)
	_check_mutable(quiz, progress, expected_version)
	new_progress, question_id = retreat_progress(progress, load_questions(quiz))
	if new_progress is not progress:
		new_progress = _write_progress(db, quiz, new_progress, expected_version)
		logger.info("Quiz %s retreated to question %d", quiz_id, new_progress.current_question_index)
	return question_id, new_progress


def reset_quiz(db: Session, quiz_id: str, user: Optional[User]) -> None:
	"""Delete the result and restart the attempt, in one transaction."""
	quiz = authorize_quiz(db, quiz_id, user).quiz
	previous = load_progress(quiz)
	try:
		result = db.query(QuizResult).filter(QuizResult.quiz_id == quiz_id).first()
		if result is not None:
			db.delete(result)
		store_progress(quiz, initial_progress(version=previous.version + 1))
		quiz.is_completed = False
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		logger.exception("Reset of quiz %s failed", quiz_id)
		raise
	logger.info("Quiz %s reset", quiz_id)


def delete_quizzes(db: Session, quiz_ids: List[str], user: Optional[User]) -> None:
	# Authorize every id before deleting anything
	quizzes = [authorize_quiz(db, quiz_id, user).quiz for quiz_id in dict.fromkeys(quiz_ids)]
	try:
		for quiz in quizzes:
			db.delete(quiz)
		db.commit()
	except SQLAlchemyError:
		db.rollback()
		logger.exception("Deleting quizzes failed")
		raise
	logger.info("Deleted %d quizzes", len(quizzes))
