from __future__ import annotations
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .errors import DataIntegrityError
from .guard import authorize_quiz
from .models import Quiz, QuizResult
from .quizzes import load_questions
from .routers.auth import User
from .schemas import Answer, IncorrectMap, QuestionReview, QuizResultsOut


def project_results(quiz: Quiz, result: QuizResult) -> QuizResultsOut:
	"""Join a quiz's questions with its stored result.

	Correctness comes only from the result's ``incorrect_question_ids``; the
	options are consulted for the correct option id, never to re-score.
	"""
	try:
		answers = [Answer.model_validate(a) for a in result.answers or []]
	except ValidationError as err:
		raise DataIntegrityError() from err
	selected_by_question = {a.question_id: a.selected_option_id for a in answers}
	incorrect: IncorrectMap = result.incorrect_question_ids or {}
	reviews = []
	for question in load_questions(quiz):
		correct = question.correct_option()
		reviews.append(QuestionReview(
			id=question.id,
			question=question.question,
			options=question.options,
			explanation=question.explanation,
			user_selected_id=selected_by_question.get(question.id),
			correct_option_id=correct.id if correct else None,
			is_correct=not incorrect.get(question.id, False),
		))
	return QuizResultsOut(
		quiz_id=quiz.id,
		result_id=result.id,
		title=quiz.title,
		score=result.score,
		correct_count=result.correct_count,
		total_questions=result.total_questions or len(reviews),
		feedback=result.feedback,
		completed_at=result.completed_at,
		questions=reviews,
	)


def get_results(db: Session, quiz_id: str, user: Optional[User]) -> Optional[QuizResultsOut]:
	quiz = authorize_quiz(db, quiz_id, user).quiz
	result = db.query(QuizResult).filter(QuizResult.quiz_id == quiz.id).first()
	if result is None:
		return None
	return project_results(quiz, result)
