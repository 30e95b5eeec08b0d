"""Built-in agent profiles seeded into every Delegation Store."""

from typing import List

from .types import AgentProfile, ProfileType

BUILTIN_PROFILES: List[AgentProfile] = [
    AgentProfile(
        id="builtin-researcher",
        name="researcher",
        description="Gathers information, reads sources and reports findings with citations.",
        system_prompt=(
            "You are a research sub-agent. Investigate the task thoroughly, use the tools "
            "available to gather evidence, and finish with a concise report of your findings."
        ),
        max_token_budget=50000,
        is_builtin=True,
        type=ProfileType.LLM,
    ),
    AgentProfile(
        id="builtin-coder",
        name="coder",
        description="Writes, reviews and debugs code for a focused change.",
        system_prompt=(
            "You are a coding sub-agent. Produce correct, minimal code for the task and "
            "explain any assumptions you made."
        ),
        max_token_budget=80000,
        is_builtin=True,
        type=ProfileType.LLM,
    ),
    AgentProfile(
        id="builtin-analyst",
        name="analyst",
        description="Compares options, evaluates trade-offs and recommends a course of action.",
        system_prompt=(
            "You are an analysis sub-agent. Break the problem down, weigh the alternatives "
            "and end with a clear recommendation."
        ),
        max_token_budget=60000,
        is_builtin=True,
        type=ProfileType.LLM,
    ),
    AgentProfile(
        id="builtin-summarizer",
        name="summarizer",
        description="Condenses long material into a short, faithful summary.",
        system_prompt="You are a summarisation sub-agent. Be brief and faithful to the source.",
        max_token_budget=20000,
        allowed_tools=[],
        is_builtin=True,
        type=ProfileType.LLM,
    ),
]


def get_builtin_profiles() -> List[AgentProfile]:
    """Fresh copies so callers can never mutate the module-level definitions."""
    return [profile.model_copy(deep=True) for profile in BUILTIN_PROFILES]
