from __future__ import annotations
import json
import logging
import re
import string
import uuid
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .errors import ExternalServiceError
from .gemini_client import GeminiClient, GeminiError
from .schemas import FeedbackBundle, GeneratedQuiz, Option, Question

logger = logging.getLogger(__name__)

OPTION_IDS = string.ascii_lowercase


def _extract_json_object(text: str) -> Dict[str, Any]:
	try:
		return json.loads(text)
	except Exception:
		pass
	code_block = re.search(r"```json\s*([\s\S]*?)\s*```", text)
	if code_block:
		candidate = code_block.group(1)
		try:
			return json.loads(candidate)
		except Exception:
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last != -1 and last > first:
		candidate = text[first : last + 1]
		try:
			return json.loads(candidate)
		except Exception:
			pass
	raise ExternalServiceError("The AI model did not return valid JSON.")


def build_quiz_prompt(notes: str, context: Optional[str], num_questions: int, options_per_question: int) -> str:
	context_block = f"Additional context: {context}\n\n" if context else ""
	return (
		"You are a study assistant that writes multiple-choice quizzes.\n"
		f"Generate a quiz based on the following notes:\n\n{notes}\n\n"
		f"{context_block}"
		f"Create {num_questions} challenging questions with {options_per_question} options each.\n"
		"Ensure exactly one option is correct for each question.\n"
		"Include a brief explanation of why the correct answer is correct.\n"
		"Also write a catchy, descriptive title for the quiz. Do not use words like \"Mastering\" or \"Exploring\".\n\n"
		"Return ONLY a JSON object with keys: title (string), questions (array of objects with keys "
		"question (string), options (array of objects with keys text (string) and is_correct (boolean)), "
		"explanation (string))."
	)


def build_feedback_prompt(bundle: FeedbackBundle) -> str:
	context_line = f"Additional context: {bundle.context}\n\n" if bundle.context else ""
	per_question = "\n\n".join(
		f"Question: {item.question}\n"
		f"Their answer: {item.selected_answer}\n"
		f"Correct answer: {item.correct_answer}\n"
		f"{'Correct' if item.is_correct else 'Incorrect'}\n"
		f"Explanation: {item.explanation}"
		for item in bundle.breakdown
	)
	return (
		f"The user took a quiz titled \"{bundle.title}\" based on these notes:\n\n"
		f"{bundle.notes}\n\n"
		f"{context_line}"
		f"They scored {bundle.score}% ({bundle.correct_count}/{bundle.total} correct).\n\n"
		f"Here's how they performed on each question:\n{per_question}\n\n"
		"Please provide:\n"
		"1. A concise analysis of their strengths (what concepts they understand well)\n"
		"2. Specific concepts they need to review further\n"
		"3. 2-3 targeted recommendations for improving their understanding\n"
		"4. A brief, motivational conclusion\n"
		"Talk TO the user in a \"you\" tone. Use simple, slightly casual language and avoid repeating words.\n"
		"Format your response in markdown with clear headings."
	)


def assign_ids(generated: GeneratedQuiz) -> List[Question]:
	"""Give every question a random id and every option a letter id."""
	questions: List[Question] = []
	for item in generated.questions:
		questions.append(Question(
			id=uuid.uuid4().hex[:12],
			question=item.question.strip(),
			options=[
				Option(id=OPTION_IDS[i], text=option.text.strip(), is_correct=option.is_correct)
				for i, option in enumerate(item.options)
			],
			explanation=item.explanation.strip(),
		))
	return questions


def validate_generated_quiz(generated: GeneratedQuiz, num_questions: int, options_per_question: int) -> None:
	if not generated.title.strip():
		raise ExternalServiceError("The AI model returned a quiz without a title.")
	if len(generated.questions) != num_questions:
		raise ExternalServiceError(
			f"The AI model returned {len(generated.questions)} questions instead of {num_questions}."
		)
	for number, item in enumerate(generated.questions, start=1):
		if len(item.options) != options_per_question:
			raise ExternalServiceError(f"Question {number} has {len(item.options)} options instead of {options_per_question}.")
		if sum(1 for o in item.options if o.is_correct) != 1:
			raise ExternalServiceError(f"Question {number} does not have exactly one correct option.")


def parse_generated_quiz(raw: str, num_questions: int, options_per_question: int) -> GeneratedQuiz:
	data = _extract_json_object(raw)
	try:
		generated = GeneratedQuiz.model_validate(data)
	except ValidationError as err:
		logger.warning("Generated quiz failed validation: %s", err)
		raise ExternalServiceError("The AI model returned a malformed quiz.") from err
	validate_generated_quiz(generated, num_questions, options_per_question)
	return generated


class QuizGenerator:
	"""Quiz and feedback generation backed by Gemini."""

	def __init__(self, client: GeminiClient) -> None:
		self._client = client

	@classmethod
	def from_api_key(cls, api_key: str) -> "QuizGenerator":
		return cls(GeminiClient(api_key))

	async def _generate(self, prompt: str, *, json_output: bool = False) -> str:
		try:
			return await self._client.generate(prompt, json_output=json_output)
		except GeminiError as err:
			raise ExternalServiceError(str(err)) from err

	async def generate_quiz(
		self,
		notes: str,
		context: Optional[str],
		num_questions: int,
		options_per_question: int,
	) -> GeneratedQuiz:
		prompt = build_quiz_prompt(notes, context, num_questions, options_per_question)
		raw = await self._generate(prompt, json_output=True)
		return parse_generated_quiz(raw, num_questions, options_per_question)

	async def generate_feedback(self, bundle: FeedbackBundle) -> str:
		text = (await self._generate(build_feedback_prompt(bundle))).strip()
		if not text:
			raise ExternalServiceError("The AI model returned empty feedback.")
		return text

	async def aclose(self) -> None:
		await self._client.aclose()


GeneratorFactory = Callable[[str], QuizGenerator]


def get_generator_factory() -> GeneratorFactory:
	return QuizGenerator.from_api_key
