from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	# Feedback generation can take a while for long quizzes
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Sessions with no activity for this long are purged by the cleanup loop
	session_retention_days: int = Field(default=7, validation_alias="SESSION_RETENTION_DAYS")

	# Per-user API keys are stored encrypted with a key derived from this secret
	api_key_encryption_secret: str = Field(default="change-me-too", validation_alias="API_KEY_ENCRYPTION_SECRET")

	# Quiz generation limits
	max_questions: int = Field(default=20, validation_alias="MAX_QUESTIONS")
	min_options_per_question: int = Field(default=2, validation_alias="MIN_OPTIONS_PER_QUESTION")
	max_options_per_question: int = Field(default=6, validation_alias="MAX_OPTIONS_PER_QUESTION")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
