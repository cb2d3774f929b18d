"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "autodeploy.log"

    # Checkout and persisted deployment files (relative paths resolve against repo_dir)
    repo_dir: str = "."
    backup_dir: str = "../backups"
    deployment_log_file: str = "logs/deployment.log"
    deployment_info_file: str = ".deployment-info.json"
    last_backup_file: str = ".last-backup"

    # Source control
    git_remote: str = "origin"
    deploy_branch: str = "main"
    remote_host: str = "github.com"

    # Build
    build_output_dir: str = "dist"
    dependency_dir: str = "node_modules"
    entry_artifact: str = "dist/index.js"
    backup_files: list[str] = Field(
        default_factory=lambda: ["package.json", "package-lock.json"]
    )
    install_command: str = "npm ci --production --silent"
    build_command: str = "npm run build"
    command_timeout_seconds: float = 300.0

    # Managed service
    service_name: str = "void-main"
    service_backend: Literal["openrc", "systemd", "simulated"] = "openrc"
    service_privilege_command: str | None = None
    service_settle_seconds: float = 5.0

    # Backups
    backup_retention: int = Field(default=5, ge=1)

    # Triggers
    github_webhook_secret: str = Field(default="")
    webhook_allow_unsigned: bool | None = None
    deploy_api_token: str = Field(default="")

    # Pre-flight
    preflight_on_startup: bool = False
    preflight_check_network: bool = True

    # Exit after a successful API-triggered deployment so the supervisor restarts us
    auto_restart: bool = False

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def allow_unsigned_webhooks(self) -> bool:
        """Whether webhooks are accepted when no secret is configured."""
        if self.webhook_allow_unsigned is not None:
            return self.webhook_allow_unsigned
        return self.is_development

    @property
    def repo_path(self) -> Path:
        return Path(self.repo_dir).resolve()

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path against the checkout directory."""
        path = Path(value)
        if not path.is_absolute():
            path = self.repo_path / path
        return path


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
