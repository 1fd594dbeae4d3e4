from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from .. import quizzes as quiz_service
from ..db import get_db
from ..errors import NotFound
from ..generation import GeneratorFactory, get_generator_factory
from ..projection import get_results
from ..schemas import (
	AdvanceRequest,
	AdvanceResponse,
	CompleteRequest,
	CompleteResponse,
	CreateQuizRequest,
	CreateQuizResponse,
	DeleteQuizzesRequest,
	QuizListOut,
	QuizOut,
	QuizResultsOut,
	RetreatRequest,
	RetreatResponse,
)
from ..scoring import complete_quiz
from .auth import User, get_optional_user

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


@router.post("", response_model=CreateQuizResponse, status_code=201)
async def create_quiz(
	req: CreateQuizRequest,
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
	generator_factory: GeneratorFactory = Depends(get_generator_factory),
):
	quiz_id = await quiz_service.create_quiz(db, user, req, generator_factory)
	return CreateQuizResponse(quiz_id=quiz_id)


@router.get("", response_model=QuizListOut)
def list_quizzes(user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	return QuizListOut(items=quiz_service.list_quizzes(db, user))


@router.post("/delete", status_code=204)
def delete_quizzes(req: DeleteQuizzesRequest, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	quiz_service.delete_quizzes(db, req.quiz_ids, user)
	return Response(status_code=204)


@router.get("/{quiz_id}", response_model=QuizOut)
def get_quiz(quiz_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	return quiz_service.get_quiz(db, quiz_id, user)


@router.post("/{quiz_id}/advance", response_model=AdvanceResponse)
def advance_question(
	quiz_id: str,
	req: AdvanceRequest,
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	answer, progress = quiz_service.advance_question(
		db, quiz_id, user, req.selected_option_id, expected_version=req.expected_version
	)
	return AdvanceResponse(answer=answer, progress=progress)


@router.post("/{quiz_id}/retreat", response_model=RetreatResponse)
def retreat_question(
	quiz_id: str,
	req: Optional[RetreatRequest] = None,
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	expected_version = req.expected_version if req else None
	question_id, progress = quiz_service.retreat_question(db, quiz_id, user, expected_version=expected_version)
	return RetreatResponse(question_id=question_id, progress=progress)


@router.post("/{quiz_id}/complete", response_model=CompleteResponse)
async def complete(
	quiz_id: str,
	req: CompleteRequest,
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
	generator_factory: GeneratorFactory = Depends(get_generator_factory),
):
	result_id = await complete_quiz(db, quiz_id, user, req.selected_option_id, generator_factory)
	return CompleteResponse(result_id=result_id)


@router.get("/{quiz_id}/results", response_model=QuizResultsOut)
def quiz_results(quiz_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	results = get_results(db, quiz_id, user)
	if results is None:
		raise NotFound("Results not found")
	return results


@router.post("/{quiz_id}/reset", status_code=204)
def reset_quiz(quiz_id: str, user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
	quiz_service.reset_quiz(db, quiz_id, user)
	return Response(status_code=204)
