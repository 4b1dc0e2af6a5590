"""
Configuration management for the LabFlow laboratory workflow system
"""

from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    """Main configuration class combining all settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "LabFlow LIMS"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = True

    # Database configuration
    database_url: str = "sqlite:///./labflow.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Workflow configuration
    workflow_allow_manual_reset: bool = True
    workflow_auto_reconcile: bool = True
    workflow_system_actor: str = "System (Auto)"
    workflow_default_actor: str = "System"

    # Reporting configuration
    report_default_doctor: str = "System"
    report_generated_status: str = "Generated"
    report_delivered_status: str = "Delivered"

    # Catalog seeding
    catalog_seed_on_startup: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_file: str = "logs/labflow.log"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_reload: bool = False
    api_cors_origins: List[str] = ["*"]
    api_cors_methods: List[str] = ["*"]
    api_cors_headers: List[str] = ["*"]

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['development', 'testing', 'production']:
            raise ValueError('Environment must be development, testing, or production')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f'Invalid log level: {v}')
        return level

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def create_log_directory(self):
        """Create log directory if it doesn't exist"""
        log_dir = Path(self.log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
