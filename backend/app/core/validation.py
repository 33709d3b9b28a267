"""
Configuration Validation Module
Validates n8n and database settings on startup
"""
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

from app.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class SettingsValidator:
    """
    Validates campaign controller settings at startup.

    Ensures the automation engine and database are configured
    before the application starts accepting requests.
    """

    def __init__(self, settings: Settings, strict: bool = False):
        """
        Initialize validator.

        Args:
            settings: Loaded application settings
            strict: If True, treat warnings as errors
        """
        self.settings = settings
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all settings.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []
        settings = self.settings

        if not settings.database_url:
            self._add_error("database", "DATABASE_URL", "Database requires DATABASE_URL to be set")
        else:
            backend = settings.database_url.split(":", 1)[0]
            self._add_success("database", "DATABASE_URL", f"Database configured ({backend})")

        if not settings.n8n_base_url.startswith(("http://", "https://")):
            self._add_error("n8n", "N8N_BASE_URL",
                f"N8N_BASE_URL must be an http(s) URL, got '{settings.n8n_base_url}'")
        else:
            self._add_success("n8n", "N8N_BASE_URL", f"n8n API at {settings.n8n_base_url}")

        if not settings.n8n_api_key:
            self._add_warning("n8n", "N8N_API_KEY",
                "n8n API key not configured (deployments will be rejected by secured instances)")
        else:
            self._add_success("n8n", "N8N_API_KEY", "n8n API key configured")

        if settings.n8n_timeout_seconds <= 0:
            self._add_error("n8n", "N8N_TIMEOUT_SECONDS", "N8N_TIMEOUT_SECONDS must be positive")

        if settings.worker_batch_size < 1:
            self._add_error("worker", "WORKER_BATCH_SIZE", "WORKER_BATCH_SIZE must be at least 1")

        errors = [r for r in self.results if not r.is_valid]
        return len(errors) == 0, self.results

    def _add_success(self, provider: str, setting: str, message: str):
        """Add successful validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=True,
            message=message
        ))

    def _add_error(self, provider: str, setting: str, message: str):
        """Add error validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=False,
            message=message
        ))

    def _add_warning(self, provider: str, setting: str, message: str):
        """Add warning validation result."""
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        errors = [r for r in self.results if not r.is_valid]
        warnings = [r for r in self.results if r.is_valid and "WARNING" in r.message]
        successes = [r for r in self.results if r.is_valid and "WARNING" not in r.message]

        if successes:
            logger.info("Configuration validated:")
            for r in successes:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

        for r in warnings:
            logger.warning(f"  ⚠ [{r.provider}] {r.message}")

        if errors:
            logger.error("Configuration errors:")
            for r in errors:
                logger.error(f"  ✗ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_settings_on_startup(settings: Settings, strict: bool = False) -> None:
    """
    Validate settings at startup.

    Call this from the FastAPI lifespan.

    Args:
        settings: Application settings
        strict: If True, fail on warnings too (production)

    Raises:
        RuntimeError: If required configuration is missing or invalid
    """
    validator = SettingsValidator(settings, strict=strict)
    all_valid, results = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All settings validated successfully")
