import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "bookstore")
    # Upper bound for any single store round-trip
    store_timeout_ms: int = int(os.getenv("STORE_TIMEOUT_MS", "5000"))

    # Server
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def from_env(cls) -> "Settings":
        """Re-read the environment, e.g. after a test changed it."""
        return cls(
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "bookstore"),
            store_timeout_ms=int(os.getenv("STORE_TIMEOUT_MS", "5000")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


settings = Settings()
