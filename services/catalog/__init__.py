from services.catalog.tools import (
    ToolSpec,
    TOOLS,
    TOOLS_BY_ID,
    DEFAULT_TOOL_ID,
    NEW_USER_TOOLS,
    SLOW_NETWORK_TOOLS,
    get_tool,
    tool_category,
)

__all__ = [
    "ToolSpec",
    "TOOLS",
    "TOOLS_BY_ID",
    "DEFAULT_TOOL_ID",
    "NEW_USER_TOOLS",
    "SLOW_NETWORK_TOOLS",
    "get_tool",
    "tool_category",
]
