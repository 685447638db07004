"""HTTP routers for the AgentDesk API."""
