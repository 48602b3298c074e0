"""Application configuration management."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailwarden.mail.gateway import Credentials
from mailwarden.rules.engine import Rule

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration files are missing or malformed."""


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="MAILWARDEN_",
        env_file=[
            ".env",  # Project-level defaults (lower priority)
            Path.home() / ".config" / "mailwarden" / ".env",  # User config (higher priority)
        ],
        env_file_encoding="utf-8",
    )

    # Processing settings
    dry_run: bool = Field(
        default=False, description="Report intended actions without touching mailboxes"
    )
    processed_retention_days: int = Field(
        default=365,
        ge=1,
        description="Days to retain processed message records before cleanup",
    )
    backup_enabled: bool = Field(
        default=False, description="Save a copy of messages before deleting them"
    )

    # Paths
    config_dir: Path = Field(
        default=Path.home() / ".config" / "mailwarden",
        description="Configuration directory",
    )
    accounts_file: str = Field(default="accounts.yaml", description="Accounts config filename")
    rules_file: str = Field(default="rules.yaml", description="Rules config filename")
    database_file: str = Field(default="mailwarden.db", description="State database filename")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Path = Field(
        default=Path.home() / ".local" / "state" / "mailwarden" / "logs",
        description="Directory for log files (per-account logs written here)",
    )
    log_rotation_size_mb: int = Field(
        default=5, ge=1, description="Max size per log file in MB before rotation"
    )
    log_backup_count: int = Field(
        default=3, ge=0, description="Number of rotated log files to keep"
    )

    @property
    def accounts_path(self) -> Path:
        """Full path to accounts file."""
        return self.config_dir / self.accounts_file

    @property
    def rules_path(self) -> Path:
        """Full path to rules file."""
        return self.config_dir / self.rules_file

    @property
    def database_path(self) -> Path:
        """Path to SQLite database for processing state."""
        return self.config_dir / self.database_file

    @property
    def backup_dir(self) -> Path:
        return self.config_dir / "backups"

    def ensure_config_dir(self) -> None:
        """Create config directory if it doesn't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)


class AccountConfig(BaseModel):
    """Connection and pacing settings for one mailbox account."""

    name: str = Field(min_length=1, description="Account name used by rules")
    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, ge=1, le=65535)
    use_tls: bool = Field(default=True)
    username: str
    password: SecretStr
    folders: list[str] = Field(default_factory=lambda: ["INBOX"], min_length=1)
    enabled: bool = Field(default=True)

    max_messages_per_session: int = Field(
        default=100, ge=1, description="Messages processed per run"
    )
    inter_action_delay_ms: int = Field(
        default=500, ge=0, description="Minimum delay between mailbox actions"
    )
    max_actions_per_minute: int = Field(
        default=60, ge=1, description="Actions allowed in any trailing minute"
    )
    max_retry_attempts: int = Field(
        default=3, ge=1, description="Attempts for transient transport failures"
    )
    retry_delay_seconds: float = Field(
        default=2.0, ge=0.0, description="Fixed delay between retry attempts"
    )

    @property
    def credentials(self) -> Credentials:
        return Credentials(self.username, self.password.get_secret_value())


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def load_accounts(path: Path) -> list[AccountConfig]:
    """
    Load account definitions from a YAML file.

    Raises:
        ConfigurationError: If the file is missing or an account is invalid.
    """
    if not path.exists():
        raise ConfigurationError(f"Accounts file not found: {path}")

    accounts: list[AccountConfig] = []
    for i, raw in enumerate(_load_yaml(path).get("accounts", [])):
        try:
            accounts.append(AccountConfig(**raw))
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid account #{i + 1} in {path}: {e}") from e

    names = [a.name for a in accounts]
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise ConfigurationError(f"Duplicate account names: {', '.join(sorted(duplicates))}")
    return accounts


def load_rules(path: Path) -> list[Rule]:
    """
    Load rules from a YAML file.

    Invalid rules are logged and skipped so one bad entry does not stop the
    rest from running. Later duplicates of a rule name are skipped too.
    """
    if not path.exists():
        return []

    rules: list[Rule] = []
    seen: set[str] = set()
    for i, raw in enumerate(_load_yaml(path).get("rules", [])):
        label = raw.get("name", f"#{i + 1}") if isinstance(raw, dict) else f"#{i + 1}"
        try:
            rule = Rule.model_validate(raw)
        except ValidationError as e:
            logger.error("Skipping invalid rule %s: %s", label, e)
            continue
        if rule.name in seen:
            logger.error("Skipping duplicate rule name %s", rule.name)
            continue
        seen.add(rule.name)
        rules.append(rule)
    return rules


def save_rules(path: Path, rules: list[Rule]) -> None:
    """Save rules to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "rules": [
            r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in rules
        ]
    }
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
