from .types import AgentConfig, AgentResponse, Usage

__all__ = ["AgentConfig", "AgentResponse", "Usage"]
