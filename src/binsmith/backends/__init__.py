"""Sandbox executors and audit hooks for platform builds."""

from .base import Auditor, ExecOptions, NoAudit, SandboxExecutor
from .local import LocalSandbox

__all__ = [
    "Auditor",
    "ExecOptions",
    "LocalSandbox",
    "NoAudit",
    "SandboxExecutor",
]
