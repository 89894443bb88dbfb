from datetime import timedelta
from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    # API Configuration
    app_name: str = "Campus Doubts API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "campus_doubts"
    store_timeout_seconds: float = 5.0

    # Ollama Configuration
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "gemma3n:latest"
    ollama_timeout: int = 30

    # Escalation ladder (dwell time per tier)
    escalation_open_minutes: float = 30
    escalation_senior_minutes: float = 30
    escalation_professor_minutes: float = 120

    # Escalation sweep
    escalation_interval_seconds: float = 60
    escalation_scheduler_enabled: bool = True

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000", "http://localhost:5173"]

    # Environment detection
    environment: str = "development"

    class Config:
        env_file = ".env"
        case_sensitive = False
        # Allow extra fields to be ignored instead of causing errors
        extra = "ignore"

    # Helper methods (not Pydantic fields)
    def is_container(self) -> bool:
        """Check if running in a container"""
        return os.path.exists("/.dockerenv") or os.environ.get("CONTAINER") == "true"

    def get_ollama_url(self) -> str:
        """Get complete Ollama URL for environment"""
        if self.is_container():
            host = os.environ.get("OLLAMA_HOST", "host.docker.internal:11434")
            return f"http://{host}"
        return self.ollama_url

    def get_dwell_times(self):
        """Build the dwell timers used by the escalation policy"""
        # services.* imports config at module load
        from services.escalation_policy import DwellTimes

        return DwellTimes(
            open=timedelta(minutes=self.escalation_open_minutes),
            senior=timedelta(minutes=self.escalation_senior_minutes),
            professor=timedelta(minutes=self.escalation_professor_minutes),
        )


settings = Settings()
