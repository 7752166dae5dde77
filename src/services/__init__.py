"""
Service layer for the chat backend.

Each service encapsulates a narrowly scoped concern (tenant configuration,
listing lookups, prompt budgeting, model calls) so that the HTTP handlers
remain thin wrappers around ``RagPipeline``.
"""

from .context_budget_manager import BudgetExceeded, ContextBudgetManager  # noqa: F401
from .tenant_config import TenantConfig, TenantConfigProvider  # noqa: F401

__all__ = [
    "BudgetExceeded",
    "ContextBudgetManager",
    "TenantConfig",
    "TenantConfigProvider",
]
