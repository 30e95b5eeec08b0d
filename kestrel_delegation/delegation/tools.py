"""Delegation-control tools offered to reasoning sub-agents.

delegate_task recurses into the coordinator; list_sub_agents and
get_delegation_result are read-only introspection answered from the
coordinator itself.
"""

from typing import List

from kestrel_delegation.providers.base import ToolSchema

DELEGATE_TASK = "delegate_task"
LIST_SUB_AGENTS = "list_sub_agents"
GET_DELEGATION_RESULT = "get_delegation_result"

DELEGATE_TASK_TOOL = ToolSchema(
    name=DELEGATE_TASK,
    description=(
        "Delegate a focused subtask to a specialised sub-agent and wait for its result. "
        "The sub-agent runs with its own token budget carved out of yours."
    ),
    parameters={
        "type": "object",
        "properties": {
            "profile": {
                "type": "string",
                "description": "Profile id or name of the sub-agent (e.g. 'researcher')",
            },
            "task": {
                "type": "string",
                "description": "The task for the sub-agent to perform",
            },
            "context": {
                "type": "string",
                "description": "Optional background the sub-agent needs",
            },
            "maxTokenBudget": {
                "type": "integer",
                "description": "Optional token budget cap for the sub-agent",
            },
        },
        "required": ["profile", "task"],
    },
)

LIST_SUB_AGENTS_TOOL = ToolSchema(
    name=LIST_SUB_AGENTS,
    description="List sub-agent delegations currently in flight with their token usage.",
    parameters={"type": "object", "properties": {}},
)

GET_DELEGATION_RESULT_TOOL = ToolSchema(
    name=GET_DELEGATION_RESULT,
    description="Fetch the result tree of a finished delegation by id.",
    parameters={
        "type": "object",
        "properties": {
            "delegationId": {
                "type": "string",
                "description": "Id of the delegation to look up",
            },
        },
        "required": ["delegationId"],
    },
)


def get_delegation_tools(depth: int, max_depth: int) -> List[ToolSchema]:
    """Tools available to a sub-agent at the given depth.

    delegate_task is withheld once a child of this delegation would sit
    at max_depth, so a sub-agent is never offered a call that must fail.
    """
    tools = [LIST_SUB_AGENTS_TOOL, GET_DELEGATION_RESULT_TOOL]
    if depth < max_depth - 1:
        tools.insert(0, DELEGATE_TASK_TOOL)
    return tools
