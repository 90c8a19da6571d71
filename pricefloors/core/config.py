from pydantic import BaseModel
from dotenv import load_dotenv
import os
from pathlib import Path

load_dotenv()


class Settings(BaseModel):
    # Floors configuration bootstrapped at startup
    FLOORS_CONFIG_PATH: str = os.getenv("FLOORS_CONFIG_PATH", str(Path(__file__).resolve().parents[1] / "config" / "floors.yaml"))

    # Remote rule catalog fetch
    FLOORS_FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FLOORS_FETCH_TIMEOUT_SECONDS", "10"))

    # Per-auction floor data is kept this long after auction end (late bids)
    FLOOR_DATA_RETENTION_MS: int = int(os.getenv("FLOOR_DATA_RETENTION_MS", "3000"))

    # Currency used when a participant does not ask for one
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:5173")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
