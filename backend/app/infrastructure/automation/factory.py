"""
Automation Engine Factory
"""
from typing import Dict, Optional, Type

from app.core.config import Settings, get_settings
from app.domain.interfaces.automation_engine import AutomationEngine
from app.infrastructure.automation.n8n import N8nEngine


class AutomationEngineFactory:
    """Factory for creating automation engine instances"""

    _engines: Dict[str, Type[AutomationEngine]] = {}

    @classmethod
    def create(cls, engine_name: str = "n8n", settings: Optional[Settings] = None) -> AutomationEngine:
        """Create an engine instance configured from settings"""
        if engine_name not in cls._engines:
            available = ", ".join(cls._engines.keys()) if cls._engines else "None"
            raise ValueError(f"Unknown automation engine: {engine_name}. Available: {available}")

        settings = settings or get_settings()
        engine_class = cls._engines[engine_name]
        return engine_class(
            base_url=settings.n8n_base_url,
            api_key=settings.n8n_api_key,
            webhook_base_url=settings.webhook_base_url,
            timeout=settings.n8n_timeout_seconds,
        )

    @classmethod
    def register(cls, name: str, engine_class: Type[AutomationEngine]) -> None:
        """Register an engine"""
        cls._engines[name] = engine_class

    @classmethod
    def list_engines(cls) -> list[str]:
        """List available engines"""
        return list(cls._engines.keys())


AutomationEngineFactory.register("n8n", N8nEngine)
