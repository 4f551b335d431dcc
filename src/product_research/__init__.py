"""Product research engine.

Autonomous research of resale subjects: a resumable phase sequence gathers
evidence from external tools, cross-validates it per field, prices the item
from comparable listings and routes the outcome to a review disposition.
"""

__version__ = "0.1.0"

from product_research.infrastructure.config import ResearchConfig
from product_research.services.control import RunControl
from product_research.services.orchestrator import ResearchOrchestrator
from product_research.services.worker import ResearchWorker

__all__ = [
    "ResearchConfig",
    "ResearchOrchestrator",
    "ResearchWorker",
    "RunControl",
]
