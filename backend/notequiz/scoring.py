"""Completion of a quiz attempt: tally, score, feedback and the result record."""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AlreadyCompleted, DataIntegrityError
from .generation import GeneratorFactory
from .guard import authorize_quiz
from .key_store import resolve_api_key
from .models import QuizResult
from .progress import advance_progress
from .quizzes import load_progress, load_questions, store_progress
from .routers.auth import User
from .schemas import Answer, FeedbackBundle, IncorrectMap, Question, QuestionBreakdown

logger = logging.getLogger(__name__)


@dataclass
class Tally:
	correct_count: int = 0
	incorrect_question_ids: IncorrectMap = field(default_factory=dict)
	breakdown: List[QuestionBreakdown] = field(default_factory=list)


def compute_score(correct_count: int, total: int) -> int:
	"""Percentage of correct answers, rounded half up.

	Integer arithmetic keeps 2/3 -> 67 and 1/8 -> 13 exact; the builtin
	``round`` would send 12.5 to 12.
	"""
	if total <= 0:
		return 0
	return (200 * correct_count + total) // (2 * total)


def tally_answers(questions: Sequence[Question], answers: Sequence[Answer]) -> Tally:
	by_id = {q.id: q for q in questions}
	tally = Tally()
	answered = set()
	for answer in answers:
		question = by_id.get(answer.question_id)
		if question is None:
			raise DataIntegrityError("A question was not found in the quiz. Something went wrong.")
		if answer.selected_option_id is None:
			continue
		selected = question.find_option(answer.selected_option_id)
		if selected is None:
			raise DataIntegrityError("An option was not found in the question. Something went wrong.")
		correct = question.correct_option()
		answered.add(question.id)
		if selected.is_correct:
			tally.correct_count += 1
		else:
			tally.incorrect_question_ids[question.id] = True
		tally.breakdown.append(QuestionBreakdown(
			question=question.question,
			selected_answer=selected.text,
			correct_answer=correct.text if correct else "",
			is_correct=selected.is_correct,
			explanation=question.explanation,
		))
	# Unanswered questions score as incorrect
	for question in questions:
		if question.id not in answered:
			tally.incorrect_question_ids[question.id] = True
	return tally


async def complete_quiz(
	db: Session,
	quiz_id: str,
	user: Optional[User],
	selected_option_id: str,
	generator_factory: GeneratorFactory,
) -> str:
	access = authorize_quiz(db, quiz_id, user)
	quiz, user = access.quiz, access.user
	if quiz.is_completed:
		raise AlreadyCompleted()
	api_key = resolve_api_key(db, user.username)

	# The final answer only reaches the database together with the result
	questions = load_questions(quiz)
	progress, _ = advance_progress(load_progress(quiz), questions, selected_option_id)
	try:
		tally = tally_answers(questions, progress.answers)
	except DataIntegrityError:
		logger.error("Quiz %s has answers that do not resolve to its questions", quiz_id)
		raise
	total = len(questions)
	score = compute_score(tally.correct_count, total)

	bundle = FeedbackBundle(
		title=quiz.title,
		notes=quiz.notes,
		context=quiz.context,
		score=score,
		correct_count=tally.correct_count,
		total=total,
		breakdown=tally.breakdown,
	)
	generator = generator_factory(api_key)
	try:
		feedback = await generator.generate_feedback(bundle)
	except Exception:
		logger.error("Feedback generation failed for quiz %s; nothing was stored", quiz_id)
		raise
	finally:
		await generator.aclose()

	# Feedback can take seconds; another request may have finished first
	db.refresh(quiz)
	if quiz.is_completed:
		raise AlreadyCompleted()
	result = QuizResult(
		quiz_id=quiz.id,
		user_id=user.username,
		completed_at=datetime.utcnow(),
		score=score,
		correct_count=tally.correct_count,
		total_questions=total,
		answers=[a.model_dump(mode="json") for a in progress.answers],
		incorrect_question_ids=tally.incorrect_question_ids,
		feedback=feedback,
	)
	try:
		store_progress(quiz, progress)
		quiz.is_completed = True
		db.add(result)
		db.commit()
	except IntegrityError as err:
		db.rollback()
		raise AlreadyCompleted() from err
	except SQLAlchemyError:
		db.rollback()
		logger.exception("Storing the result of quiz %s failed", quiz_id)
		raise
	logger.info("Quiz %s completed by %s with score %d (%d/%d)", quiz_id, user.username, score, tally.correct_count, total)
	return result.id
