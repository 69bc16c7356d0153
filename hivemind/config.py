"""Configuration management using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hivemind.graph.relationships import parse_rule


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Vault
    vault_path: Path
    db_path: Path | None = None

    # Extra exclusions - stored as comma-separated string in .env
    exclude_patterns: str = ""

    # Live updates
    watch_for_changes: bool = True
    debounce_ms: int = 100

    # Scanning
    max_concurrent_reads: int = 16
    duplicate_ids: Literal["skip", "fail"] = "skip"

    # Search
    search_overfetch: int = 2
    search_max_candidates: int = 200

    # Relationship kinds by type pair, e.g. "character>location=located_in"
    relationship_rules: str = ""

    @property
    def exclude_list(self) -> list[str]:
        """Parse extra exclusion patterns as a list."""
        return [p.strip() for p in self.exclude_patterns.split(",") if p.strip()]

    @property
    def relationship_rule_list(self) -> list[str]:
        """Parse relationship rules as a list."""
        return [r.strip() for r in self.relationship_rules.split(",") if r.strip()]

    @property
    def database_path(self) -> Path:
        """Resolved store location, defaulting to a file inside the vault."""
        if self.db_path is not None:
            return self.db_path
        return self.vault_path / ".hivemind" / "graph.db"

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @field_validator("vault_path")
    @classmethod
    def validate_vault_path(cls, v: Path) -> Path:
        """Ensure vault path exists and is a directory."""
        if not v.exists():
            raise ValueError(f"Vault path does not exist: {v}")
        if not v.is_dir():
            raise ValueError(f"Vault path is not a directory: {v}")
        return v.resolve()

    @field_validator("relationship_rules")
    @classmethod
    def validate_relationship_rules(cls, v: str) -> str:
        """Reject malformed source>target=kind rules early."""
        for rule in v.split(","):
            if rule.strip():
                parse_rule(rule)
        return v

    @field_validator(
        "debounce_ms", "max_concurrent_reads", "search_overfetch", "search_max_candidates"
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Value must not be negative: {v}")
        return v


def get_settings() -> Settings:
    """Load settings from environment."""
    return Settings()
