"""
Local tool registry for qaprobe.

This module provides a decorator to register tools and a registry to look them up by name.
Local tools are exposed to the planner exactly like the tools discovered from the MCP server:
each one has a name, a description and a JSON schema for its arguments.  The decorated function
receives the parsed argument dict and returns ``{"success": True, "result": ...}`` or
``{"success": False, "error": "..."}``.  It may be a plain function or a coroutine function.
"""

import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Union,
)

from qaprobe.core.schema import ToolDescriptor

ToolFn = Callable[[Dict[str, Any]], Union[Dict[str, Any], Awaitable[Dict[str, Any]]]]


class LocalTool:
    """A registered local tool."""

    def __init__(
        self, name: str, description: str, input_schema: Mapping[str, Any], execute: ToolFn
    ) -> None:
        self.name = name
        self.description = description
        self.input_schema = dict(input_schema)
        self.execute = execute

    @property
    def descriptor(self) -> ToolDescriptor:
        """The tool as the planner sees it."""
        return ToolDescriptor(
            name=self.name, description=self.description, parameters=self.input_schema
        )

    def __repr__(self) -> str:
        return f"LocalTool({self.name!r})"


TOOL_REGISTRY: Dict[str, LocalTool] = {}
"""Global registry of local tools, in registration order."""


def register_tool(name: str, description: str, input_schema: Mapping[str, Any]) -> Callable:
    """
    Register a local tool under *name*.

    Used as a decorator:
        @register_tool("myTool", "Does a thing", {"type": "object", "properties": {}})
        def my_tool(args):
            return {"success": True, "result": ...}

    Parameters
    ----------
    name: str
        The tool name shown to the planner.  Must be unique.
    description: str
        What the tool does, shown to the planner.
    input_schema: Mapping
        JSON schema of the argument object.
    Returns
    -------
    Callable
        A decorator that registers the function and returns it unchanged.
    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger = logging.getLogger(__name__)
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: ToolFn) -> ToolFn:
        TOOL_REGISTRY[name] = LocalTool(name, description, input_schema, fn)
        return fn

    return wrapper


def get_local_tools() -> List[LocalTool]:
    """Return all registered local tools in registration order."""
    return list(TOOL_REGISTRY.values())


# Register the built-in tools
from qaprobe.tools import test_files  # noqa: E402,F401  pylint: disable=wrong-import-position
