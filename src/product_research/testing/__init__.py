"""Public testing utilities for product research.

Provides a scripted tool implementation for writing self-contained demos
and tests without any external services.
"""

from product_research.testing.fake_tools import ScriptedResearchTools, demo_tools

__all__ = ["ScriptedResearchTools", "demo_tools"]
