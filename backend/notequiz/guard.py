from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .errors import NotFound, Unauthenticated, Unauthorized
from .models import Quiz
from .routers.auth import User

logger = logging.getLogger(__name__)


@dataclass
class QuizAccess:
	quiz: Quiz
	user: User


def authorize_quiz(db: Session, quiz_id: str, user: Optional[User]) -> QuizAccess:
	"""Load a quiz and check that ``user`` owns it.

	This is the single ownership check for every quiz operation. The order of
	failures is fixed: missing quiz, then missing user, then foreign owner.
	"""
	quiz = db.get(Quiz, quiz_id)
	if quiz is None:
		raise NotFound()
	if user is None:
		raise Unauthenticated()
	if quiz.user_id != user.username:
		logger.warning("User %s denied access to quiz %s", user.username, quiz_id)
		raise Unauthorized()
	return QuizAccess(quiz=quiz, user=user)
