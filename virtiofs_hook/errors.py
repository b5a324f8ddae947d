"""Project-specific exception types."""

from __future__ import annotations


class VirtiofsHookError(RuntimeError):
    """Base error for domain-level hookscript failures."""


class SetupError(VirtiofsHookError):
    """Raised before any side effect when the invocation cannot proceed."""


class ShareMapError(SetupError):
    """Raised when the share mapping file cannot be read."""


class ShareConfigError(SetupError):
    """Raised when a VM's share list would alias unit names."""


class RuntimeDirError(SetupError):
    """Raised when the virtiofsd runtime directory cannot be created."""


class UnknownPhaseError(SetupError):
    """Raised for a phase token that is not a known lifecycle phase."""


class VMConfigError(SetupError):
    """Raised when the VM configuration cannot be loaded or written."""


class ProvisionError(VirtiofsHookError):
    """Raised after rolling back a partially provisioned VM."""


class UnitRenderError(ProvisionError):
    """Raised when the unit template cannot be rendered."""
