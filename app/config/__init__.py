"""Configuration package."""

from app.config.plans import PLANS, AddOnType, PlanCatalog, PlanConfig, get_plan
from app.config.settings import Settings, settings

__all__ = [
    "AddOnType",
    "PlanCatalog",
    "PlanConfig",
    "PLANS",
    "get_plan",
    "Settings",
    "settings",
]
