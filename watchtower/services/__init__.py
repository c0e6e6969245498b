"""Dashboard operations built on the stores and the cache orchestrator."""
from watchtower.services.sales_service import SalesService
from watchtower.services.watchtower_service import WatchtowerService

__all__ = ["SalesService", "WatchtowerService"]
