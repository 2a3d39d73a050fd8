"""
Configuration management using Pydantic models loaded from YAML.
"""

import logging
from pathlib import Path
from typing import List, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator


class UserProfile(BaseModel):
    """A user known to the authentication service."""
    id: str
    name: str
    email: str = ""

    def display_name(self) -> str:
        """Get display name."""
        return self.name


class AppConfig(BaseModel):
    """Application configuration."""
    database_url: str = "sqlite:///slotswap.db"
    timezone: str = "Europe/Berlin"
    log_level: str = "WARNING"
    users: List[UserProfile] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("users")
    @classmethod
    def validate_users(cls, value: List[UserProfile]) -> List[UserProfile]:
        """Ensure user ids, names and emails are unique."""
        seen_ids: set[str] = set()
        seen_names: set[str] = set()
        seen_emails: set[str] = set()
        for user in value:
            name_key = user.name.lower()
            email_key = user.email.lower()
            if user.id in seen_ids:
                raise ValueError(f"Duplicate user id detected: {user.id}")
            if name_key in seen_names:
                raise ValueError(f"Duplicate user name detected: {user.name}")
            if email_key and email_key in seen_emails:
                raise ValueError(f"Duplicate user email detected: {user.email}")
            seen_ids.add(user.id)
            seen_names.add(name_key)
            if email_key:
                seen_emails.add(email_key)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_user(self, user_id: str) -> Optional[UserProfile]:
        """Find a user by id."""
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    def find_user_by_name(self, name: str) -> Optional[UserProfile]:
        for user in self.users:
            if user.name.lower() == name.lower():
                return user
        return None

    def find_user_by_email(self, email: str) -> Optional[UserProfile]:
        for user in self.users:
            if user.email and user.email.lower() == email.lower():
                return user
        return None

    def resolve_user(self, identifier: str) -> UserProfile:
        """
        Resolve a user identifier (id, name or email) to a profile.

        Raises:
            ValueError: If identifier cannot be resolved
        """
        user = self.find_user(identifier)
        if user is None and "@" in identifier:
            user = self.find_user_by_email(identifier)
        if user is None:
            user = self.find_user_by_name(identifier)
        if user is None:
            raise ValueError(
                f"Unknown user identifier: '{identifier}'. "
                f"Use a configured user id, name or email address."
            )
        return user


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
