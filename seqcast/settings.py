from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SEQCAST_")

    APP_NAME: str = "seqcast"

    # broadcaster
    CAPACITY: int = 32
    INITIAL_VALUE: int = 1
    LAG_POLICY: Literal["skip", "raise"] = "skip"

    # server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"
