from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class Option(BaseModel):
	id: str
	text: str
	is_correct: bool


class Question(BaseModel):
	id: str
	question: str
	options: List[Option]
	explanation: str

	def find_option(self, option_id: Optional[str]) -> Optional[Option]:
		return next((o for o in self.options if o.id == option_id), None)

	def correct_option(self) -> Optional[Option]:
		return next((o for o in self.options if o.is_correct), None)


class Answer(BaseModel):
	question_id: str
	# None means the question was visited but not answered
	selected_option_id: Optional[str] = None


class Progress(BaseModel):
	current_question_index: int = 0
	answers: List[Answer] = Field(default_factory=list)
	last_updated: datetime = Field(default_factory=utcnow)
	# Incremented on every persisted change; used for optimistic concurrency
	version: int = 0


class QuizOut(BaseModel):
	id: str
	user_id: str
	title: str
	notes: str
	context: Optional[str] = None
	num_questions: int
	options_per_question: int
	questions: List[Question]
	progress: Progress
	is_completed: bool
	created_at: datetime


class QuizSummary(BaseModel):
	id: str
	title: str
	created_at: datetime
	progress_count: int
	total_questions: int
	is_completed: bool


class QuizListOut(BaseModel):
	items: List[QuizSummary]


class CreateQuizRequest(BaseModel):
	notes: str
	context: Optional[str] = None
	num_questions: int = 10
	options_per_question: int = 4


class CreateQuizResponse(BaseModel):
	quiz_id: str


class AdvanceRequest(BaseModel):
	selected_option_id: str
	expected_version: Optional[int] = None


class AdvanceResponse(BaseModel):
	answer: Answer
	progress: Progress


class RetreatRequest(BaseModel):
	expected_version: Optional[int] = None


class RetreatResponse(BaseModel):
	question_id: str
	progress: Progress


class CompleteRequest(BaseModel):
	selected_option_id: str


class CompleteResponse(BaseModel):
	result_id: str


class DeleteQuizzesRequest(BaseModel):
	quiz_ids: List[str]


class QuestionReview(BaseModel):
	id: str
	question: str
	options: List[Option]
	explanation: str
	user_selected_id: Optional[str] = None
	correct_option_id: Optional[str] = None
	is_correct: bool


class QuizResultsOut(BaseModel):
	quiz_id: str
	result_id: str
	title: str
	score: int
	correct_count: int
	total_questions: int
	feedback: str
	completed_at: datetime
	questions: List[QuestionReview]


class GeneratedOption(BaseModel):
	text: str
	is_correct: bool


class GeneratedQuestion(BaseModel):
	question: str
	options: List[GeneratedOption]
	explanation: str = ""


class GeneratedQuiz(BaseModel):
	title: str
	questions: List[GeneratedQuestion]


class QuestionBreakdown(BaseModel):
	question: str
	selected_answer: str
	correct_answer: str
	is_correct: bool
	explanation: str


class FeedbackBundle(BaseModel):
	title: str
	notes: str
	context: Optional[str] = None
	score: int
	correct_count: int
	total: int
	breakdown: List[QuestionBreakdown]


class ApiKeyIn(BaseModel):
	api_key: str


class ApiKeyOut(BaseModel):
	api_key: Optional[str] = None
	has_api_key: bool


IncorrectMap = Dict[str, bool]
