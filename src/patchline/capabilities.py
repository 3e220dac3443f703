"""Workspace capabilities granted to a stage and their Claude Code tool names."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class Capability(str, Enum):
    """One permitted category of workspace action."""

    READ_FILE = "read-file"
    WRITE_FILE = "write-file"
    EDIT_FILE = "edit-file"
    RUN_SHELL = "run-shell"
    SEARCH_CONTENTS = "search-contents"
    LIST_FILES = "list-files"


# Claude Code tools that implement each capability.
CAPABILITY_TOOLS: dict[Capability, tuple[str, ...]] = {
    Capability.READ_FILE: ("Read", "NotebookRead"),
    Capability.WRITE_FILE: ("Write",),
    Capability.EDIT_FILE: ("Edit", "MultiEdit", "NotebookEdit"),
    Capability.RUN_SHELL: ("Bash", "BashOutput", "KillShell"),
    Capability.SEARCH_CONTENTS: ("Grep",),
    Capability.LIST_FILES: ("Glob", "LS"),
}

# Tools that are always denied, whatever the grant.
ALWAYS_DENIED_TOOLS: tuple[str, ...] = ("WebFetch", "WebSearch", "Task")

# Bookkeeping tools that touch nothing in the workspace.
NEUTRAL_TOOLS: frozenset[str] = frozenset({"TodoWrite", "TodoRead", "ExitPlanMode"})

KNOWN_TOOLS: tuple[str, ...] = tuple(
    tool for tools in CAPABILITY_TOOLS.values() for tool in tools
) + ALWAYS_DENIED_TOOLS


class CapabilitySet(frozenset):
    """Immutable set of :class:`Capability` members.

    Construction rejects anything that is not a known capability, so an
    illegal grant fails when a stage is defined rather than at call time.
    """

    def __new__(cls, capabilities: Iterable[Capability | str] = ()) -> CapabilitySet:
        members: list[Capability] = []
        for item in capabilities:
            if isinstance(item, Capability):
                members.append(item)
                continue
            try:
                members.append(Capability(str(item).strip().lower()))
            except ValueError:
                valid = ", ".join(c.value for c in Capability)
                raise ValueError(f"Unknown capability {item!r}. Valid: {valid}") from None
        return super().__new__(cls, members)

    def tool_names(self) -> list[str]:
        """Return the Claude Code tools granted by this set, in stable order."""
        tools: list[str] = []
        for capability in Capability:
            if capability in self:
                tools.extend(CAPABILITY_TOOLS[capability])
        return tools

    def denied_tool_names(self) -> list[str]:
        """Return every known tool this set does *not* grant."""
        granted = set(self.tool_names())
        return [tool for tool in KNOWN_TOOLS if tool not in granted]

    def permits_tool(self, tool_name: str) -> bool:
        """Return True when *tool_name* is allowed under this grant.

        Unknown tools are never permitted; MCP tools (``mcp__*``) are denied.
        """
        name = (tool_name or "").strip()
        if name in NEUTRAL_TOOLS:
            return True
        return name in self.tool_names()

    def can_mutate(self) -> bool:
        """Return True when the grant allows writing, editing, or shell access."""
        return bool(self & {Capability.WRITE_FILE, Capability.EDIT_FILE, Capability.RUN_SHELL})

    def __repr__(self) -> str:
        names = ", ".join(c.value for c in Capability if c in self)
        return f"CapabilitySet({{{names}}})"


READ_ONLY = CapabilitySet(
    [Capability.READ_FILE, Capability.SEARCH_CONTENTS, Capability.LIST_FILES]
)
