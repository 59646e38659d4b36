from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional

load_dotenv()

class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "info"
    MAX_REQUESTS_PER_MIN: int = 30

    HEADLESS: bool = True
    BROWSER_EXECUTABLE_PATH: Optional[str] = "/usr/bin/google-chrome-stable"
    USER_DATA_DIR: Path = Path("/tmp/arena-relay-profile")
    USER_AGENT: Optional[str] = None
    VIEWPORT_WIDTH: int = 1920
    VIEWPORT_HEIGHT: int = 1080

    TARGET_URL: str = "https://lmarena.ai/"
    READY_SELECTOR: str = 'textarea[placeholder="Ask me anything..."]'
    NAVIGATION_TIMEOUT_MS: int = 90000
    READY_TIMEOUT_MS: int = 60000

    AUTH_COOKIE_NAME: str = "arena-auth-prod-v1"
    STREAM_ENDPOINT: str = "https://lmarena.ai/nextjs-api/stream/create-evaluation"
    DEFAULT_MODEL_ID: str = "cb0f1e24-e8e9-4745-aabc-b926ffde7475"

    # Name of the page-side function injected tasks call to hand chunks back.
    BRIDGE_BINDING: str = "__relayChunk"
    CHUNK_IDLE_TIMEOUT: Optional[float] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
