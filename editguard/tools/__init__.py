from editguard.tools.catalog import (
    TOOL_CATALOG,
    ExpectedOperation,
    ToolSpec,
    get_tool,
    list_tools,
)

__all__ = ["TOOL_CATALOG", "ExpectedOperation", "ToolSpec", "get_tool", "list_tools"]
