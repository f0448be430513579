from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	gemini_http_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_HTTP_TIMEOUT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="QCM Explanations", validation_alias="OPENROUTER_TITLE")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed moderator account (dev convenience)
	seed_admin_username: str | None = Field(default=None, validation_alias="SEED_ADMIN_USERNAME")
	seed_admin_password: str | None = Field(default=None, validation_alias="SEED_ADMIN_PASSWORD")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Where persisted module context files live when referenced by relative path
	upload_dir: str = Field(default="./uploads", validation_alias="UPLOAD_DIR")

	# Logging
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

	# Explanation policy
	max_explanations_per_question: int = Field(default=3, validation_alias="MAX_EXPLANATIONS_PER_QUESTION")
	level_required_for_voting: int = Field(default=20, validation_alias="LEVEL_REQUIRED_FOR_VOTING")
	high_vote_weight: int = Field(default=20, validation_alias="HIGH_VOTE_WEIGHT")
	explanation_reward_points: int = Field(default=40, validation_alias="EXPLANATION_REWARD_POINTS")

	# AI generation
	generation_timeout_seconds: float = Field(default=90.0, validation_alias="GENERATION_TIMEOUT_SECONDS")
	batch_delay_seconds: float = Field(default=1.0, validation_alias="BATCH_DELAY_SECONDS")
	# 0 disables the deadline
	batch_deadline_seconds: float = Field(default=1800.0, validation_alias="BATCH_DEADLINE_SECONDS")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
