"""Router modules for the agent gateway."""

from .agent import router as agent_router

__all__ = ["agent_router"]
