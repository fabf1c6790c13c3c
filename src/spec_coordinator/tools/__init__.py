"""Agent CLI profiles, detection, role assignment and process execution."""

from spec_coordinator.tools.definitions import (
    LEAD_PRIORITY,
    TOOL_PROFILES,
    Invocation,
    ToolProfile,
    build_invocation,
    profile_for,
)
from spec_coordinator.tools.detection import ToolInfo, ToolRegistry, detect_tools
from spec_coordinator.tools.roles import RoleAssignment, assign_roles, normalize_resumed_roles
from spec_coordinator.tools.runner import ExecutionResult, ProcessToolRunner, ToolRunner
from spec_coordinator.tools.sandbox import SandboxBackend, SandboxSettings

__all__ = [
    "ExecutionResult",
    "Invocation",
    "LEAD_PRIORITY",
    "ProcessToolRunner",
    "RoleAssignment",
    "SandboxBackend",
    "SandboxSettings",
    "TOOL_PROFILES",
    "ToolInfo",
    "ToolProfile",
    "ToolRegistry",
    "ToolRunner",
    "assign_roles",
    "build_invocation",
    "detect_tools",
    "normalize_resumed_roles",
    "profile_for",
]
