"""
AgentX Engine - Task Distribution Backend

FastAPI service that ingests contact spreadsheets, persists them as tasks and
distributes them across active field agents. Agents retrieve their batches and
mark tasks complete over a cookie-authenticated API.
"""

__version__ = "0.1.0"
