"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from homelab.core.models import HostDeclaration, ProbedState, Action, Receipt, RunReport
"""

from homelab.core.models.action import Action, Receipt
from homelab.core.models.declaration import (
    CommandRequirement,
    FileRequirement,
    FirewallDeclaration,
    FirewallPolicy,
    FirewallRule,
    HostDeclaration,
    PackageRequirement,
    RepositoryRequirement,
    Resource,
    ServiceRequirement,
    Settings,
)
from homelab.core.models.report import ReportEntry, RunReport
from homelab.core.models.stack import Route, SecretBinding, StackDeclaration, StackService
from homelab.core.models.state import (
    FileState,
    FirewallState,
    HostFacts,
    ProbedState,
    RepositoryState,
    ServiceState,
)

__all__ = [
    "Action",
    "CommandRequirement",
    "FileRequirement",
    "FileState",
    "FirewallDeclaration",
    "FirewallPolicy",
    "FirewallRule",
    "FirewallState",
    "HostDeclaration",
    "HostFacts",
    "PackageRequirement",
    "ProbedState",
    "Receipt",
    "ReportEntry",
    "RepositoryRequirement",
    "RepositoryState",
    "Resource",
    "Route",
    "RunReport",
    "SecretBinding",
    "ServiceRequirement",
    "ServiceState",
    "Settings",
    "StackDeclaration",
    "StackService",
]
