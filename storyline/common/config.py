import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    title_similarity_threshold: float = float(os.getenv("TITLE_SIMILARITY_THRESHOLD", "0.85"))
    stale_job_timeout_minutes: int = int(os.getenv("STALE_JOB_TIMEOUT_MINUTES", "30"))
    log_retention_days: int = int(os.getenv("LOG_RETENTION_DAYS", "30"))
    resolved_duplicate_retention_days: int = int(os.getenv("RESOLVED_DUPLICATE_RETENTION_DAYS", "14"))
    duplicate_rescan_limit: int = int(os.getenv("DUPLICATE_RESCAN_LIMIT", "500"))
    fingerprint_max_distance: int = int(os.getenv("FINGERPRINT_MAX_DISTANCE", "3"))


settings = Settings()
