"""Design agent: tool descriptors and the policy that offers them.

This package is a library surface for an external agent runner. The relay
itself exposes no agent route; a runner builds an ``AgentPolicy`` with
``create_design_agent``, passes ``tool_definitions()`` to the provider and
answers each tool call through ``AgentPolicy.execute``.
"""

from relay.app.agent.policy import AgentPolicy, create_design_agent
from relay.app.agent.tools import DESIGN_TOOLS, DesignContext, ToolDescriptor

__all__ = [
    "AgentPolicy",
    "create_design_agent",
    "DESIGN_TOOLS",
    "DesignContext",
    "ToolDescriptor",
]
