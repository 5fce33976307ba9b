from pydantic import Field
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = "mongodb://localhost:27017/missiontrack"
    debug: bool = False
    # JWT secrets are read without the prefix; emptiness is rejected by TokenSecrets
    jwt_access_secret: str = Field(default="", validation_alias="JWT_ACCESS_SECRET")
    jwt_refresh_secret: str = Field(default="", validation_alias="JWT_REFRESH_SECRET")
    retention_sweep_seconds: int = Field(default=60, ge=1)  # Interval between retention sweeps

    model_config = {
        "env_file": [".env"],
        "env_prefix": "MISSIONTRACK_",
        "extra": "ignore",
        "populate_by_name": True,
    }
