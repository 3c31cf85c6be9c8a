"""Agent MCP tools package.

Lets an agent drive shell sessions: open a session in a tmux pane, run
commands in it, read its output, interrupt, close, list.

Custom tools: open, exec, output, interrupt, close, panes
"""

from claude_agent_sdk import create_sdk_mcp_server

from .terminal import close_tool, exec_tool, interrupt_tool, open_tool, output_tool, panes_tool

# ============================================================================
# CANVAS_TOOLS: The MCP tools exposed to the agent.
# ============================================================================

CANVAS_TOOLS = [
    open_tool,
    exec_tool,
    output_tool,
    interrupt_tool,
    close_tool,
    panes_tool,
]

canvas_server = create_sdk_mcp_server(
    name="shell-canvas",
    version="0.1.0",
    tools=CANVAS_TOOLS,
)

__all__ = [
    "canvas_server",
    "CANVAS_TOOLS",
    "open_tool",
    "exec_tool",
    "output_tool",
    "interrupt_tool",
    "close_tool",
    "panes_tool",
]
