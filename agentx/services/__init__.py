"""
AgentX Engine - Services

Business logic between the HTTP routers and the Postgres store.
"""
