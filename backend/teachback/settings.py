from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database
	database_url: str = Field(default="sqlite:///./teachback.db", validation_alias="DATABASE_URL")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Learner used when a request carries no X-Learner-Id header
	default_learner: str = Field(default="guest", validation_alias="DEFAULT_LEARNER")

	# Dialogue understanding heuristic
	dialogue_max_learner_turns: int = Field(default=4, validation_alias="DIALOGUE_MAX_LEARNER_TURNS")
	dialogue_short_utterance_chars: int = Field(default=50, validation_alias="DIALOGUE_SHORT_UTTERANCE_CHARS")
	dialogue_short_reply_turn_limit: int = Field(default=2, validation_alias="DIALOGUE_SHORT_REPLY_TURN_LIMIT")
	dialogue_understood_min_turns: int = Field(default=3, validation_alias="DIALOGUE_UNDERSTOOD_MIN_TURNS")
	dialogue_detailed_utterance_chars: int = Field(default=80, validation_alias="DIALOGUE_DETAILED_UTTERANCE_CHARS")

	# Pause shown to the learner before Teach jumps to Feedback
	understood_advance_seconds: float = Field(default=2.0, validation_alias="UNDERSTOOD_ADVANCE_SECONDS")

	# Optional score variability; 0 keeps feedback deterministic
	feedback_jitter: float = Field(default=0.0, validation_alias="FEEDBACK_JITTER")
	feedback_seed: int | None = Field(default=None, validation_alias="FEEDBACK_SEED")

	# In-progress learn state older than this is purged at startup and daily
	stale_state_days: int = Field(default=7, validation_alias="STALE_STATE_DAYS")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
