from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from .db import Base


def _new_id() -> str:
	return uuid.uuid4().hex


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	# Fernet token of the user's model API key (see key_store)
	api_key_ciphertext = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT "jti" claim
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), ForeignKey("auth_users.username", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Quiz(Base):
	__tablename__ = "quizzes"

	id = Column(String(32), primary_key=True, default=_new_id)
	user_id = Column(String(128), ForeignKey("auth_users.username", ondelete="CASCADE"), index=True, nullable=False)
	title = Column(String(512), nullable=False)
	notes = Column(Text, nullable=False)
	context = Column(Text, nullable=True)
	num_questions = Column(Integer, nullable=False)
	options_per_question = Column(Integer, nullable=False)
	questions = Column(JSON, nullable=False)  # [{id, question, options: [{id, text, is_correct}], explanation}]
	progress = Column(JSON, nullable=False)   # {current_question_index, answers, last_updated, version}
	# Mirrors progress.version; conditional UPDATEs compare against this column
	version = Column(Integer, default=0, nullable=False)
	is_completed = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)

	result = relationship("QuizResult", back_populates="quiz", uselist=False, cascade="all, delete-orphan")


class QuizResult(Base):
	__tablename__ = "quiz_results"

	id = Column(String(32), primary_key=True, default=_new_id)
	# One live result per quiz
	quiz_id = Column(String(32), ForeignKey("quizzes.id", ondelete="CASCADE"), unique=True, index=True, nullable=False)
	user_id = Column(String(128), ForeignKey("auth_users.username", ondelete="CASCADE"), index=True, nullable=False)
	completed_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
	score = Column(Integer, nullable=False)
	correct_count = Column(Integer, nullable=False)
	total_questions = Column(Integer, default=0, nullable=False)
	answers = Column(JSON, nullable=False)                 # snapshot of progress.answers
	incorrect_question_ids = Column(JSON, nullable=False)  # {question_id: true}
	feedback = Column(Text, nullable=False)

	quiz = relationship("Quiz", back_populates="result")
