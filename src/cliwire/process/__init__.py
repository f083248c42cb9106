"""Agent CLI child-process lifecycle and the active-process registry."""

from cliwire.process.registry import ProcessRegistry
from cliwire.process.supervisor import ProcessSupervisor, SpawnError

__all__ = [
    "ProcessRegistry",
    "ProcessSupervisor",
    "SpawnError",
]
