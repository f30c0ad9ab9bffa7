"""Chain rendering, iptables access and reconciliation."""

from nsf.services.rules import ChainIntent, Direction, render_rules
from nsf.services.iptables import ChainMutator, IptablesProber
from nsf.services.reconciler import Reconciler, ReconcileReport, set_container_chains
from nsf.services.runtime import ContainerResolver, NamespaceTarget

__all__ = [
    "ChainIntent",
    "Direction",
    "render_rules",
    "ChainMutator",
    "IptablesProber",
    "Reconciler",
    "ReconcileReport",
    "set_container_chains",
    "ContainerResolver",
    "NamespaceTarget",
]
