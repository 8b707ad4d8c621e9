"""
Claim services: key registration, job polling and the two-phase orchestrator.
"""

from __future__ import annotations

from .orchestrator import ClaimOrchestrator
from .poller import JobPoller
from .registrar import VkRegistrar, parse_vk_id

__all__ = ["ClaimOrchestrator", "JobPoller", "VkRegistrar", "parse_vk_id"]
