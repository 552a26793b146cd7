"""HTTP API layer for dashboard metrics and attribution."""
from .routes import get_metrics_service, router

__all__ = ["get_metrics_service", "router"]
