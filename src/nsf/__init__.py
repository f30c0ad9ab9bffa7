"""
Namespace Firewall - reconcile iptables chains inside network namespaces.

Creates and rewrites custom filter chains in a container's network
namespace so they match a declared set, hooking each one exactly once.
"""

__version__ = "1.0.0"
__author__ = "Namespace Firewall Team"
