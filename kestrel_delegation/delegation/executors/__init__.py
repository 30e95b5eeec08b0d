"""Executors for each profile type, sharing one call signature."""

from .bridge import BridgeExecutor, render_input_template
from .context import ExecutionContext
from .process import ProcessExecutor, parse_output
from .reasoning import ReasoningLoopExecutor, build_user_message

__all__ = [
    "BridgeExecutor",
    "ExecutionContext",
    "ProcessExecutor",
    "ReasoningLoopExecutor",
    "build_user_message",
    "parse_output",
    "render_input_template",
]
