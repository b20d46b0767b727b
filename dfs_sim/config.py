from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "DFS Sim Service"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Optimizer
    OPTIMIZER_TIMEOUT: float = 28.0
    MAX_LINEUPS: int = 150
    EXPOSURE_MAX_RETRIES: int = 10

    # Strategy weights
    CEILING_PROBABILITY_WEIGHT: float = 0.5
    FLOOR_PROBABILITY_WEIGHT: float = 0.5
    BALANCED_PROJECTION_WEIGHT: float = 0.5
    BALANCED_FLOOR_WEIGHT: float = 0.25
    BALANCED_CEILING_WEIGHT: float = 0.25
    CONTRARIAN_OWNERSHIP_PENALTY: float = 15.0
    CORRELATION_BONUS_WEIGHT: float = 0.1

    # Correlation groups
    TEAM_CORRELATION: float = 0.2
    GAME_CORRELATION: float = 0.1
    WAVE_CORRELATION: float = 0.3
    OPPONENT_CORRELATION: float = 0.0

    # Simulation
    SIMULATION_WORKERS: int = 4
    SIMULATION_CHUNK_SIZE: int = 1000
    SIMULATION_FIELD_SIZE: int = 100
    SIMULATION_TIMEOUT: float = 60.0
    MAX_SIMULATION_ITERATIONS: int = 200000
    DEFAULT_ENTRY_FEE: int = 2000  # minor units

    # Cache / progress
    CACHE_TTL_SECONDS: float = 300.0
    PROGRESS_QUEUE_SIZE: int = 64

    class Config:
        env_file = ".env"


settings = Settings()
