import os

# Keep tests independent of any local .env or database file
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = ""
os.environ["API_KEY_ENCRYPTION_SECRET"] = "test-encryption-secret"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from notequiz.db import Base, get_db
from notequiz.generation import OPTION_IDS, get_generator_factory
from notequiz.main import app
from notequiz.models import AuthUser, Quiz
from notequiz.progress import initial_progress
from notequiz.routers.auth import User
from notequiz.schemas import GeneratedOption, GeneratedQuestion, GeneratedQuiz
from notequiz.settings import settings


def build_generated_quiz(num_questions=3, options_per_question=2, title="Cells and Their Powerhouses"):
	# First option is always the correct one
	return GeneratedQuiz(
		title=title,
		questions=[
			GeneratedQuestion(
				question=f"Question {i + 1}?",
				options=[
					GeneratedOption(text=f"Answer {i + 1}{OPTION_IDS[j]}", is_correct=(j == 0))
					for j in range(options_per_question)
				],
				explanation=f"Explanation {i + 1}.",
			)
			for i in range(num_questions)
		],
	)


class FakeGenerator:
	def __init__(self):
		self.quiz = build_generated_quiz()
		self.feedback = "## Strengths\nYou know your organelles."
		self.error = None
		self.api_keys = []
		self.feedback_calls = []
		self.quiz_calls = []
		self.closed = 0

	def factory(self, api_key):
		self.api_keys.append(api_key)
		return self

	async def generate_quiz(self, notes, context, num_questions, options_per_question):
		self.quiz_calls.append((notes, context, num_questions, options_per_question))
		if self.error is not None:
			raise self.error
		return build_generated_quiz(num_questions, options_per_question, title=self.quiz.title)

	async def generate_feedback(self, bundle):
		self.feedback_calls.append(bundle)
		if self.error is not None:
			raise self.error
		return self.feedback

	async def aclose(self):
		self.closed += 1


@pytest.fixture(autouse=True)
def _no_server_api_key(monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", None)


@pytest.fixture
def engine():
	engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
	Base.metadata.create_all(bind=engine)
	yield engine
	engine.dispose()


@pytest.fixture
def session_factory(engine):
	return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
	session = session_factory()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def fake_generator():
	return FakeGenerator()


@pytest.fixture
def client(session_factory, fake_generator):
	def _get_db():
		session = session_factory()
		try:
			yield session
		finally:
			session.close()

	app.dependency_overrides[get_db] = _get_db
	app.dependency_overrides[get_generator_factory] = lambda: fake_generator.factory
	try:
		yield TestClient(app)
	finally:
		app.dependency_overrides.clear()


def register_and_login(client, username, password="correct-horse"):
	r = client.post("/auth/register", json={"username": username, "password": password})
	assert r.status_code == 201, r.text
	r = client.post("/auth/token", data={"username": username, "password": password})
	assert r.status_code == 200, r.text
	return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def alice(client):
	return register_and_login(client, "alice")


@pytest.fixture
def bob(client):
	return register_and_login(client, "bob")


def make_user(db, username):
	db.add(AuthUser(username=username, password_hash="not-a-real-hash"))
	db.commit()
	return User(username=username)


def make_quiz(db, owner="alice", num_questions=3, options_per_question=2):
	questions = [
		{
			"id": f"q{i + 1}",
			"question": f"Question {i + 1}?",
			"options": [
				{"id": OPTION_IDS[j], "text": f"Answer {i + 1}{OPTION_IDS[j]}", "is_correct": j == 0}
				for j in range(options_per_question)
			],
			"explanation": f"Explanation {i + 1}.",
		}
		for i in range(num_questions)
	]
	quiz = Quiz(
		user_id=owner,
		title="Cells and Their Powerhouses",
		notes="Mitochondria produce ATP.",
		context=None,
		num_questions=num_questions,
		options_per_question=options_per_question,
		questions=questions,
		progress=initial_progress().model_dump(mode="json"),
		is_completed=False,
	)
	db.add(quiz)
	db.commit()
	return quiz
