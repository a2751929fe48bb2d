"""Configuration for the attribution engine."""

from __future__ import annotations

import os

from pydantic import BaseModel


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class AttributionConfig(BaseModel):
    """Tables and limits used when answering drill-down requests."""

    visit_table: str = "page_views"
    conversion_table: str = "crm_subscription_enriched"
    visitor_ids_enabled: bool = True
    default_limit: int = 1000
    max_limit: int = 10_000

    @classmethod
    def from_env(cls) -> AttributionConfig:
        """Load configuration from environment variables."""
        return cls(
            visit_table=os.getenv("DRILLNAV_VISIT_TABLE", "page_views"),
            conversion_table=os.getenv("DRILLNAV_CONVERSION_TABLE", "crm_subscription_enriched"),
            visitor_ids_enabled=_env_flag("DRILLNAV_VISITOR_IDS_ENABLED", True),
        )

    def clamp_limit(self, limit: int | None) -> int:
        """Clamp a requested row limit into [1, max_limit]."""
        if limit is None:
            return self.default_limit
        return max(1, min(self.max_limit, int(limit)))
