import os
from typing import Optional, List
from dotenv import load_dotenv
from pathlib import Path

# Load .env from project folder explicitly (works even if CWD differs)
_BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=_BASE_DIR / ".env")


class Settings:
    # Storage
    DATABASE_URL: str = os.getenv("PERSONALIZATION_DATABASE_URL", "sqlite:///./personalization.db")
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8010"))
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"

    # CORS
    ALLOWED_ORIGINS: List[str] = os.getenv("ALLOWED_ORIGINS", "*").split(",")

    # Observability
    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "personalization-engine")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "True").lower() == "true"
    CONFIG_PATH: Optional[str] = os.getenv("PERSONALIZATION_CONFIG_PATH")

    # Assignment hashing
    HASH_SEED: int = int(os.getenv("HASH_SEED", "20240611"))

    # Bounded histories
    GENERATION_HISTORY_LIMIT: int = int(os.getenv("GENERATION_HISTORY_LIMIT", "500"))
    BEHAVIOR_HISTORY_LIMIT: int = int(os.getenv("BEHAVIOR_HISTORY_LIMIT", "100"))
    TOOL_HISTORY_LIMIT: int = int(os.getenv("TOOL_HISTORY_LIMIT", "500"))
    CONTEXT_PATTERN_LIMIT: int = int(os.getenv("CONTEXT_PATTERN_LIMIT", "200"))
    QUALITY_HISTORY_LIMIT: int = int(os.getenv("QUALITY_HISTORY_LIMIT", "100"))
    PERFORMANCE_HISTORY_LIMIT: int = int(os.getenv("PERFORMANCE_HISTORY_LIMIT", "1000"))
    DRIFT_HISTORY_LIMIT: int = int(os.getenv("DRIFT_HISTORY_LIMIT", "500"))

    # Monitoring
    ALERT_THROTTLE_MINUTES: int = int(os.getenv("ALERT_THROTTLE_MINUTES", "30"))
    MODEL_OFFLINE_MINUTES: int = int(os.getenv("MODEL_OFFLINE_MINUTES", "10"))
    RETENTION_DAYS: int = int(os.getenv("RETENTION_DAYS", "7"))
    SWEEP_INTERVAL_MINUTES: int = int(os.getenv("SWEEP_INTERVAL_MINUTES", "5"))

    # Quality assessment
    DECODE_TIMEOUT_SECONDS: float = float(os.getenv("DECODE_TIMEOUT_SECONDS", "2.0"))
    ANALYSIS_MAX_SIDE: int = int(os.getenv("ANALYSIS_MAX_SIDE", "512"))

    # Experiments
    EXPERIMENT_AUTO_STOP: bool = os.getenv("EXPERIMENT_AUTO_STOP", "True").lower() == "true"
    EXPERIMENT_AUTO_STOP_CHECK_INTERVAL: int = int(os.getenv("EXPERIMENT_AUTO_STOP_CHECK_INTERVAL", "50"))


settings = Settings()
