from .agent import Agent, AgentInput

__all__ = ["Agent", "AgentInput"]
