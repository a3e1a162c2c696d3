"""
Visual fallback tier: vision-model element resolution and cost accounting.
"""

from deskprobe.core.vision.agent_bridge import AgentBridge, handle_agent_request
from deskprobe.core.vision.base import VisualResolver
from deskprobe.core.vision.client import VLMClient, create_visual_resolver
from deskprobe.core.vision.cost_tracker import CostTracker, Pricing

__all__ = [
    "AgentBridge",
    "CostTracker",
    "Pricing",
    "VLMClient",
    "VisualResolver",
    "create_visual_resolver",
    "handle_agent_request",
]
