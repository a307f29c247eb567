"""Tool catalog, dispatcher and the built-in tools."""

from lumen.tools.registry import MediaResult, ToolDeclaration, ToolRegistry, ToolResult

__all__ = ["MediaResult", "ToolDeclaration", "ToolRegistry", "ToolResult"]
