from clubhouse.agents.manager import AgentBusyError, AgentManager, validate_agent_id
from clubhouse.agents.models import HookEvent, SpawnAgentRequest

__all__ = ["AgentBusyError", "AgentManager", "HookEvent", "SpawnAgentRequest", "validate_agent_id"]
