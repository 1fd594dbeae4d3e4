"""HTTP-aware error taxonomy for quiz operations.

Every error is an ``HTTPException`` so routers and services can raise them
directly; FastAPI renders them as ``{"detail": ...}``. The ``X-Error-Code``
header carries a stable code the HTTP client maps back to these classes.
"""
from __future__ import annotations
from typing import Dict, Optional, Type

from fastapi import HTTPException


class QuizError(HTTPException):
	status_code = 500
	code = "error"
	default_detail = "Something went wrong."

	def __init__(self, detail: Optional[str] = None) -> None:
		super().__init__(
			status_code=type(self).status_code,
			detail=detail or self.default_detail,
			headers={"X-Error-Code": self.code},
		)


class NotFound(QuizError):
	status_code = 404
	code = "not_found"
	default_detail = "Quiz not found"


class Unauthenticated(QuizError):
	status_code = 401
	code = "unauthenticated"
	default_detail = "Unauthenticated. Please login to continue."


class Unauthorized(QuizError):
	status_code = 403
	code = "unauthorized"
	default_detail = "Unauthorized to work on this quiz."


class QuizValidationError(QuizError):
	status_code = 400
	code = "validation_error"
	default_detail = "Invalid input."


class DataIntegrityError(QuizError):
	status_code = 500
	code = "data_integrity"
	default_detail = "Quiz data is inconsistent. Something went wrong."


class ExternalServiceError(QuizError):
	status_code = 502
	code = "external_service"
	default_detail = "The AI service failed. Please try again."


class MissingApiKeyError(ExternalServiceError):
	status_code = 400
	code = "missing_api_key"
	default_detail = "No API key found. Please add an API key in settings."


class AlreadyCompleted(QuizError):
	status_code = 409
	code = "already_completed"
	default_detail = "This quiz has already been completed."


class ConflictError(QuizError):
	status_code = 409
	code = "conflict"
	default_detail = "Quiz progress changed in another session. Reload and try again."


ERRORS_BY_CODE: Dict[str, Type[QuizError]] = {
	cls.code: cls
	for cls in (
		NotFound,
		Unauthenticated,
		Unauthorized,
		QuizValidationError,
		DataIntegrityError,
		ExternalServiceError,
		MissingApiKeyError,
		AlreadyCompleted,
		ConflictError,
	)
}


def error_from_response(status_code: int, code: Optional[str], detail: Optional[str]) -> QuizError:
	cls = ERRORS_BY_CODE.get(code or "")
	if cls is None:
		# Responses raised by FastAPI itself (e.g. missing bearer token, body validation)
		if status_code == 401:
			cls = Unauthenticated
		elif status_code == 404:
			cls = NotFound
		elif status_code in (400, 422):
			cls = QuizValidationError
		else:
			cls = QuizError
	return cls(detail)
