"""
AgentX Engine - API Routers
"""

from . import agents, auth, dashboard, health, tasks

__all__ = ["agents", "auth", "dashboard", "health", "tasks"]
