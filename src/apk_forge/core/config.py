"""Application configuration."""

import tempfile
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App info
    VERSION: str = "1.0.0"
    APP_NAME: str = "APK Forge"
    DEBUG: bool = False

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 7860
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]
    PUBLIC_BASE_URL: str = "http://127.0.0.1:7860"

    # Paths
    TEMPLATE_PATH: Path = Path("./webview-template")
    WORK_PATH: Path = Path(tempfile.gettempdir()) / "apk-forge"
    ARTIFACTS_PATH: Path = Path.home() / "APK_FORGE" / "artifacts"

    # Build queue
    MAX_CONCURRENT_BUILDS: int = 2
    BUILD_TIMEOUT: float = 600  # 10 minutes
    PREP_TIMEOUT: float = 120
    BUILD_COMMAND: List[str] = ["./gradlew", "assembleRelease", "--no-daemon", "-q"]
    PREP_COMMAND: List[str] = ["npx", "cap", "sync", "android"]
    BUILD_OUTPUT_LIMIT: int = 1024 * 1024
    ERROR_TAIL_CHARS: int = 2000
    MAX_ERROR_LENGTH: int = 4000
    KILL_PROCESS_TREE: bool = False

    # Job records
    JOB_RETENTION_MINUTES: int = 60
    PRUNE_INTERVAL: float = 60

    # Icon
    ICON_FETCH_TIMEOUT: float = 30
    ICON_MAX_BYTES: int = 10 * 1024 * 1024
    ICON_RENDER_DENSITIES: bool = True

    # Request validation / auth
    DEPLOY_HOST_SUFFIX: str = ".workers.dev"
    BUILD_SECRET: str = ""
    SIGNATURE_MAX_AGE: int = 60

    # Artifact publishing: "local" or "http"
    PUBLISHER: str = "local"
    UPLOAD_URL: str = ""
    UPLOAD_TOKEN: str = ""
    GATEWAY_URL: str = "https://arweave.net"

    class Config:
        env_prefix = "APK_FORGE_"
        env_file = ".env"
        case_sensitive = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Create directories
        self.WORK_PATH.mkdir(parents=True, exist_ok=True)
        if self.PUBLISHER == "local":
            self.ARTIFACTS_PATH.mkdir(parents=True, exist_ok=True)

        self.TEMPLATE_PATH = self.TEMPLATE_PATH.resolve()


settings = Settings()

