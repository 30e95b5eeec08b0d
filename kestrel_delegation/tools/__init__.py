"""Kestrel Delegation - External tool provider interface"""

from .provider import ExternalTool, ToolProvider, filter_allowed, find_tool

__all__ = ["ExternalTool", "ToolProvider", "filter_allowed", "find_tool"]
