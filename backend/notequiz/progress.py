"""Pure transitions of a quiz attempt's progress.

Nothing here touches the database; the same functions drive the server-side
mutations and the client-side optimistic mirror so both compute identical
next states.
"""
from __future__ import annotations
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .errors import DataIntegrityError, QuizValidationError
from .schemas import Answer, Progress, Question, utcnow


def clamp_index(index: int, question_count: int) -> int:
	if question_count <= 0:
		return 0
	return max(0, min(index, question_count - 1))


def merge_answer(answers: Sequence[Answer], new_answer: Answer) -> List[Answer]:
	"""Replace the answer for the same question in place, else append."""
	merged = [a.model_copy() for a in answers]
	for i, existing in enumerate(merged):
		if existing.question_id == new_answer.question_id:
			merged[i] = new_answer
			return merged
	merged.append(new_answer)
	return merged


def current_question(progress: Progress, questions: Sequence[Question]) -> Question:
	if not questions:
		raise DataIntegrityError("Quiz has no questions.")
	return questions[clamp_index(progress.current_question_index or 0, len(questions))]


def advance_progress(
	progress: Progress,
	questions: Sequence[Question],
	selected_option_id: str,
	*,
	now: Optional[datetime] = None,
) -> Tuple[Progress, Answer]:
	question = current_question(progress, questions)
	if question.find_option(selected_option_id) is None:
		raise QuizValidationError(f"Option '{selected_option_id}' does not belong to the current question.")
	index = clamp_index(progress.current_question_index or 0, len(questions))
	answer = Answer(question_id=question.id, selected_option_id=selected_option_id)
	new_progress = Progress(
		current_question_index=min(index + 1, len(questions) - 1),
		answers=merge_answer(progress.answers, answer),
		last_updated=now or utcnow(),
		version=progress.version + 1,
	)
	return new_progress, answer


def retreat_progress(progress: Progress, questions: Sequence[Question]) -> Tuple[Progress, str]:
	if not questions:
		raise DataIntegrityError("Quiz has no questions.")
	index = clamp_index(progress.current_question_index or 0, len(questions))
	new_index = max(index - 1, 0)
	if new_index == progress.current_question_index:
		# Already at the first question
		return progress, questions[new_index].id
	new_progress = progress.model_copy(update={
		"current_question_index": new_index,
		"version": progress.version + 1,
	})
	return new_progress, questions[new_index].id


def initial_progress(now: Optional[datetime] = None, *, version: int = 0) -> Progress:
	return Progress(current_question_index=0, answers=[], last_updated=now or utcnow(), version=version)
