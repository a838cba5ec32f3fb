"""Application Settings.

Combines the ConfigManager sections with process-level settings (log format,
API bind address) read from the environment.

Security Impact:
    - Settings are loaded from secure configuration sources
    - Sensitive values are never logged
"""

import os
from typing import Optional

from consent_gateway.infrastructure.config_manager import (
    AuthConfig,
    ConfigManager,
    DatabaseConfig,
    IdentityPolicy,
    LedgerConfig,
)

APP_NAME = "Consent Gateway"
APP_VERSION = "1.0.0"


class Settings:
    """Application settings backed by a ConfigManager.

    Parameters:
        config_manager: Source of configuration sections; when omitted,
            CG_CONFIG_FILE is used if set, otherwise the environment
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._config_manager = config_manager

        self.app_name = os.getenv("CG_APP_NAME", APP_NAME)
        self.log_level = os.getenv("CG_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("CG_LOG_JSON", "false").lower() == "true"
        self.api_host = os.getenv("CG_API_HOST", "127.0.0.1")
        self.api_port = int(os.getenv("CG_API_PORT", "8000"))
        self.cors_origins = [
            o.strip() for o in os.getenv("CG_CORS_ORIGINS", "").split(",") if o.strip()
        ]

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            config_file = os.getenv("CG_CONFIG_FILE")
            if config_file:
                self._config_manager = ConfigManager.from_file(config_file)
            else:
                self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def db_config(self) -> DatabaseConfig:
        return self.config_manager.get_database_config()

    @property
    def ledger_config(self) -> LedgerConfig:
        return self.config_manager.get_ledger_config()

    @property
    def identity_policy(self) -> IdentityPolicy:
        return self.config_manager.get_identity_policy()

    @property
    def auth_config(self) -> AuthConfig:
        return self.config_manager.get_auth_config()


settings = Settings()
