from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import QuizError, error_from_response
from .mirror import QuizMirror
from .schemas import (
	AdvanceResponse,
	Answer,
	ApiKeyOut,
	QuizListOut,
	QuizOut,
	QuizResultsOut,
	QuizSummary,
	RetreatResponse,
)

logger = logging.getLogger(__name__)


class QuizApiClient:
	"""HTTP client for the quiz API that keeps an optimistic local mirror.

	Advance and retreat update the mirror before the request is sent; the
	server's progress replaces the prediction on success and the prediction
	is dropped on any error.
	"""

	def __init__(
		self,
		base_url: str = "http://localhost:8000",
		*,
		token: Optional[str] = None,
		http: Optional[httpx.Client] = None,
		mirror: Optional[QuizMirror] = None,
		timeout: float = 90.0,
	) -> None:
		self._owns_http = http is None
		self._http = http or httpx.Client(base_url=base_url, timeout=timeout)
		self.token = token
		self.mirror = mirror or QuizMirror()

	def _headers(self) -> Dict[str, str]:
		return {"Authorization": f"Bearer {self.token}"} if self.token else {}

	def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
		r = self._http.request(method, path, headers=self._headers(), **kwargs)
		if r.is_error:
			try:
				detail = r.json().get("detail")
			except ValueError:
				detail = r.text
			if not isinstance(detail, str):
				detail = str(detail)
			raise error_from_response(r.status_code, r.headers.get("X-Error-Code"), detail)
		return r

	def login(self, username: str, password: str) -> str:
		r = self._request("POST", "/auth/token", data={"username": username, "password": password})
		self.token = r.json()["access_token"]
		return self.token

	def create_quiz(self, notes: str, *, context: Optional[str] = None, num_questions: int = 10, options_per_question: int = 4) -> str:
		r = self._request("POST", "/quizzes", json={
			"notes": notes,
			"context": context,
			"num_questions": num_questions,
			"options_per_question": options_per_question,
		})
		return r.json()["quiz_id"]

	def list_quizzes(self) -> List[QuizSummary]:
		return QuizListOut.model_validate(self._request("GET", "/quizzes").json()).items

	def get_quiz(self, quiz_id: str) -> QuizOut:
		quiz = QuizOut.model_validate(self._request("GET", f"/quizzes/{quiz_id}").json())
		self.mirror.load(quiz)
		return quiz

	def _expected_version(self, quiz_id: str) -> Optional[int]:
		confirmed = self.mirror.confirmed(quiz_id)
		return confirmed.progress.version if confirmed else None

	def advance(self, quiz_id: str, selected_option_id: str) -> Answer:
		expected_version = self._expected_version(quiz_id)
		self.mirror.predict_advance(quiz_id, selected_option_id)
		try:
			r = self._request("POST", f"/quizzes/{quiz_id}/advance", json={
				"selected_option_id": selected_option_id,
				"expected_version": expected_version,
			})
		except (QuizError, httpx.HTTPError):
			self.mirror.rollback(quiz_id)
			logger.debug("Discarded optimistic progress for quiz %s", quiz_id)
			raise
		body = AdvanceResponse.model_validate(r.json())
		self.mirror.confirm(quiz_id, body.progress)
		return body.answer

	def retreat(self, quiz_id: str) -> str:
		expected_version = self._expected_version(quiz_id)
		self.mirror.predict_retreat(quiz_id)
		try:
			r = self._request("POST", f"/quizzes/{quiz_id}/retreat", json={"expected_version": expected_version})
		except (QuizError, httpx.HTTPError):
			self.mirror.rollback(quiz_id)
			logger.debug("Discarded optimistic progress for quiz %s", quiz_id)
			raise
		body = RetreatResponse.model_validate(r.json())
		self.mirror.confirm(quiz_id, body.progress)
		return body.question_id

	def complete(self, quiz_id: str, selected_option_id: str) -> str:
		r = self._request("POST", f"/quizzes/{quiz_id}/complete", json={"selected_option_id": selected_option_id})
		result_id = r.json()["result_id"]
		self.get_quiz(quiz_id)
		return result_id

	def results(self, quiz_id: str) -> QuizResultsOut:
		return QuizResultsOut.model_validate(self._request("GET", f"/quizzes/{quiz_id}/results").json())

	def reset(self, quiz_id: str) -> None:
		self._request("POST", f"/quizzes/{quiz_id}/reset")
		self.get_quiz(quiz_id)

	def delete(self, quiz_ids: List[str]) -> None:
		self._request("POST", "/quizzes/delete", json={"quiz_ids": quiz_ids})
		for quiz_id in quiz_ids:
			self.mirror.forget(quiz_id)

	def get_api_key(self) -> ApiKeyOut:
		return ApiKeyOut.model_validate(self._request("GET", "/keys").json())

	def store_api_key(self, api_key: str) -> None:
		self._request("PUT", "/keys", json={"api_key": api_key})

	def close(self) -> None:
		if self._owns_http:
			self._http.close()
