"""Engine settings and the static crew roster loaded at startup."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Tunables for routing, gating and the lifecycle sweep.

    The numeric defaults are empirical and carried over from the production
    crew. Override them through ``DISPATCH_*`` environment variables.
    """

    model_config = SettingsConfigDict(env_prefix="DISPATCH_", extra="ignore")

    # Capability registry
    ema_weight: float = Field(0.1, gt=0.0, le=1.0)

    # Request classifier
    classification_floor: float = Field(0.3, ge=0.0)
    fallback_confidence: float = Field(0.5, ge=0.0, le=1.0)

    # Selection scorer
    load_headroom_weight: float = 50.0
    responsiveness_ceiling: float = 10.0
    capability_match_weight: float = 10.0
    urgent_bonus: float = 20.0
    high_bonus: float = 10.0
    fallback_candidates: int = Field(3, ge=0)

    # Confidence gate
    execution_threshold: float = Field(0.8, ge=0.0, le=1.0)
    action_timeout_seconds: float = Field(30.0, gt=0.0)

    # Lifecycle sweep
    sweep_interval_seconds: float = Field(30.0, gt=0.0)
    auto_accept_after_seconds: float = Field(300.0, ge=0.0)
    task_retention_seconds: float = Field(3600.0, ge=0.0)

    # External collaborators
    upstream_timeout_seconds: float = Field(30.0, gt=0.0)
    persistence_timeout_seconds: float = Field(5.0, gt=0.0)
    completion_url: str | None = None
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".dispatch")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "data" / "dispatch.db"


# Static crew roster. Re-applied on every process start; load always starts at 0.
DEFAULT_PROFILES: list[dict[str, object]] = [
    {
        "worker_id": "anchor",
        "capabilities": [
            "shopify_management",
            "product_creation",
            "inventory_management",
            "order_processing",
        ],
        "specializations": ["e-commerce", "store_management", "automation"],
        "max_concurrent": 5,
        "avg_response_time_ms": 2000.0,
        "success_rate": 95.0,
    },
    {
        "worker_id": "pearl",
        "capabilities": ["data_analysis", "market_research", "trend_analysis", "reporting"],
        "specializations": ["analytics", "insights", "research"],
        "max_concurrent": 3,
        "avg_response_time_ms": 5000.0,
        "success_rate": 98.0,
    },
    {
        "worker_id": "flint",
        "capabilities": ["content_creation", "marketing_automation", "social_media", "seo"],
        "specializations": ["marketing", "content", "automation"],
        "max_concurrent": 4,
        "avg_response_time_ms": 3000.0,
        "success_rate": 92.0,
    },
    {
        "worker_id": "splash",
        "capabilities": [
            "customer_service",
            "communication",
            "support_tickets",
            "chat_management",
        ],
        "specializations": ["customer_support", "communication", "service"],
        "max_concurrent": 8,
        "avg_response_time_ms": 1500.0,
        "success_rate": 96.0,
    },
    {
        "worker_id": "drake",
        "capabilities": [
            "financial_analysis",
            "pricing_optimization",
            "cost_management",
            "reporting",
        ],
        "specializations": ["finance", "pricing", "optimization"],
        "max_concurrent": 3,
        "avg_response_time_ms": 4000.0,
        "success_rate": 97.0,
    },
]
