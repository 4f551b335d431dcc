"""Presentation layer: rich console rendering."""

from product_research.presentation.console import ConsoleDashboard

__all__ = ["ConsoleDashboard"]
