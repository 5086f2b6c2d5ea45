"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


def get_default_storage_path() -> str:
    """
    Get OS-specific default storage path for subscription data.

    Returns:
        - macOS: ~/Library/Application Support/TravelPlanner
        - Linux: ~/.local/share/travel-planner
        - Windows: %APPDATA%/TravelPlanner
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":  # macOS
        return str(home / "Library" / "Application Support" / "TravelPlanner")
    elif system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return str(Path(appdata) / "TravelPlanner")
        return str(home / "AppData" / "Roaming" / "TravelPlanner")
    else:  # Linux and others
        # Follow XDG Base Directory specification
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            return str(Path(xdg_data) / "travel-planner")
        return str(home / ".local" / "share" / "travel-planner")


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "Travel Planner Entitlements API"
    APP_ENV: str = "development"

    # Server
    API_HOST: str = "localhost"
    API_PORT: int = 8000
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Local subscription store
    STORAGE_DIR: str = get_default_storage_path()
    STORAGE_NAMESPACE: str = "subscription"
    STORE_FILE: Optional[str] = None

    # Key for the tamper-detection marker. Must be overridden outside development.
    MARKER_SECRET: str = "dev-marker-secret-change-me"

    # Entitlement rules
    EXPIRY_WARNING_DAYS: int = 7
    MOBILE_CODE_GRANT_DAYS: int = 30
    # Development switch: accept any well-formed mobile code without a lookup
    ACCEPT_UNVERIFIED_MOBILE_CODES: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    def model_post_init(self, __context) -> None:
        """Initialize derived paths after model creation"""
        if self.STORE_FILE is None:
            object.__setattr__(
                self, 'STORE_FILE', str(Path(self.STORAGE_DIR) / "subscription_store.json")
            )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    def create_directories(self):
        """Create the storage directory"""
        Path(self.STORAGE_DIR).mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return settings
