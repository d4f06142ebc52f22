"""Design agent policy: model, tool set and sampling settings.

The tool-calling loop itself runs against the provider; this module only
describes the agent and executes individual tool calls against a snapshot.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from relay.app.agent.tools import DESIGN_TOOLS, DesignContext, ToolDescriptor, ToolResult
from relay.app.core.logging import get_logger
from relay.app.exceptions import InvalidRequestError

logger = get_logger(__name__)

DESIGN_AGENT_MODEL = "claude-sonnet-4-20250514"
DESIGN_AGENT_MAX_STEPS = 15
DESIGN_AGENT_TEMPERATURE = 1.0

DESIGN_AGENT_SYSTEM_PROMPT = (
    "You are an expert UX/UI design assistant for Figma with deep knowledge of design "
    "systems, WCAG accessibility standards, visual hierarchy, and modern design best "
    "practices. Use the available tools to gather information and provide comprehensive "
    "analysis."
)


@dataclass
class AgentPolicy:
    """Everything needed to run the design agent against one snapshot."""
    context: DesignContext
    model: str = DESIGN_AGENT_MODEL
    tools: List[ToolDescriptor] = field(default_factory=lambda: list(DESIGN_TOOLS))
    max_steps: int = DESIGN_AGENT_MAX_STEPS
    temperature: float = DESIGN_AGENT_TEMPERATURE
    system: str = DESIGN_AGENT_SYSTEM_PROMPT

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        return next((tool for tool in self.tools if tool.name == name), None)

    def tool_definitions(self) -> List[Dict[str, Any]]:
        """Tool list for the provider's ``tools`` request field."""
        return [tool.to_tool_definition() for tool in self.tools]

    def execute(self, name: str, raw_input: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run one tool call requested by the model.

        Args:
            name: Tool name as offered to the model
            raw_input: Tool input as produced by the model (camelCase keys)

        Returns:
            The tool result in wire form (camelCase keys, unset fields dropped)

        Raises:
            InvalidRequestError: Unknown tool, or input that fails the tool's schema
        """
        tool = self.get_tool(name)
        if tool is None:
            raise InvalidRequestError(f"Unknown tool: {name}")

        try:
            params = tool.parameters.model_validate(raw_input or {})
        except ValidationError as e:
            logger.warning(
                f"Rejected input for tool {name}",
                extra={"tool": name, "error_count": e.error_count()},
            )
            raise InvalidRequestError(f"Invalid input for tool {name}: {e.errors()[0]['msg']}")

        try:
            result = tool.execute(params, self.context)
        except (TypeError, ValueError, AttributeError) as e:
            # Snapshot content the tool cannot interpret is reported to the model
            logger.warning(
                f"Tool {name} failed on snapshot data",
                extra={"tool": name, "error_type": type(e).__name__},
            )
            result = ToolResult(success=False, error=f"Design data could not be analyzed: {e}")
        logger.debug("Tool executed", extra={"tool": name, "success": result.success})
        return result.model_dump(by_alias=True, exclude_none=True)


def create_design_agent(context: DesignContext | Dict[str, Any] | None = None) -> AgentPolicy:
    """Build the design agent for a snapshot sent by the plugin."""
    if not isinstance(context, DesignContext):
        context = DesignContext.model_validate(context or {})
    return AgentPolicy(context=context)
