from datetime import timedelta
from functools import lru_cache
import logging
from pathlib import Path
import sys

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


logging.getLogger("aiosqlite").setLevel(logging.INFO)
logging.getLogger("asyncio").setLevel(logging.INFO)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.INFO)


class BoundaryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_idle_gap: timedelta = timedelta(minutes=10)
    max_session_duration: timedelta = timedelta(hours=4)
    min_session_duration: timedelta = timedelta(minutes=2)
    grace_period: timedelta = timedelta(seconds=30)
    minimum_break_idle: timedelta = timedelta(seconds=20)
    # Gaps shorter than this are not worth a gap record
    min_recorded_gap: timedelta = timedelta(seconds=1)
    excluded_switch_apps: frozenset[str] = frozenset(
        {"explorer", "taskbar", "desktop"}
    )


class ClusteringConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_intra_cluster_gap: timedelta = timedelta(minutes=10)
    max_cluster_duration: timedelta = timedelta(hours=4)
    min_cluster_duration: timedelta = timedelta(minutes=2)
    context_similarity_threshold: float = 0.6
    min_activities_per_cluster: int = 2
    split_pair_similarity: float = 0.3
    split_average_similarity: float = 0.5
    break_density_per_minute: float = 0.1
    duration_weight_horizon: timedelta = timedelta(minutes=30)
    interaction_weight_horizon: int = 100


class MergeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    merge_lookback: timedelta = timedelta(minutes=15)
    thinking_time: timedelta = timedelta(seconds=30)
    related_apps_gap: timedelta = timedelta(minutes=2)
    same_app_gap: timedelta = timedelta(minutes=5)
    minimum_break_idle: timedelta = timedelta(seconds=20)
    max_session_duration: timedelta = timedelta(hours=4)
    ai_merge_enabled: bool = False
    ai_merge_confidence_threshold: float = 0.7
    advisor_deadline: timedelta = timedelta(minutes=2)
    # Not calibrated probabilities, tune freely
    rule_merge_confidence: float = 0.6
    rule_no_merge_confidence: float = 0.8


class ClassifierConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    ai_enabled: bool = True
    min_activities_for_ai: int = 3
    fallback_confidence: float = 0.3
    min_score_threshold: float = 8.0
    max_concurrent_classifications: int = Field(default=1, ge=1)
    classification_deadline: timedelta = timedelta(minutes=2)


class OllamaConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str = "http://127.0.0.1:11434"
    model: str = "llama3.2:3b"
    timeout: timedelta = timedelta(seconds=30)
    health_check_timeout: timedelta = timedelta(seconds=5)
    health_check_interval: timedelta = timedelta(minutes=5)
    max_retries: int = Field(default=3, ge=1)
    retry_delay: timedelta = timedelta(seconds=2)
    temperature: float = 0.4
    top_k: int = 20
    top_p: float = 0.95
    feedback_lookback_days: int = 30
    feedback_limit: int = 50
    feedback_similarity_threshold: float = 0.3
    max_similar_corrections: int = 5


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FOCUSFLARE_", env_nested_delimiter="__", frozen=True
    )

    db_path: Path = Path("focusflare.sqlite3")
    log_file_path: Path = Path("logs/focusflare.log")
    log_level: str = "INFO"
    batch_interval: timedelta = timedelta(minutes=15)
    lookback_hours: int = 24

    boundary: BoundaryConfig = BoundaryConfig()
    clustering: ClusteringConfig = ClusteringConfig()
    merge: MergeConfig = MergeConfig()
    classifier: ClassifierConfig = ClassifierConfig()
    ollama: OllamaConfig = OllamaConfig()


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()


class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller to get correct stack depth
        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(settings: Settings) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )

    settings.log_file_path.parent.mkdir(exist_ok=True, parents=True)

    logger.add(
        settings.log_file_path.resolve(),
        rotation="50 MB",
        retention=timedelta(days=7),
        backtrace=True,
        diagnose=False,
        level=settings.log_level,
        enqueue=True,
    )
