"""Chain intents and the rule renderer.

A ChainIntent describes one custom chain: which direction it filters,
the verdict it applies and the IP sets it matches. Rendering turns an
intent into iptables rule specifications, one per IP set, in order.
Rendering is pure and never touches a namespace.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from nsf.core.exceptions import InvalidDirection


# A fully formed rule specification, e.g.
# "-A CHAOS-IN-web -m set --match-set setA src -j DROP"
RenderedRule = str

_DIRECTION_ALIASES = {
    "input": "input",
    "inbound": "input",
    "in": "input",
    "output": "output",
    "outbound": "output",
    "out": "output",
}


class Direction(str, Enum):
    """Traffic direction a chain filters."""
    INBOUND = "input"
    OUTBOUND = "output"

    @property
    def base_chain(self) -> str:
        """Kernel chain the umbrella chain is hooked into."""
        return "INPUT" if self is Direction.INBOUND else "OUTPUT"

    @property
    def match_field(self) -> str:
        """ipset match flag: inbound matches source, outbound destination."""
        return "src" if self is Direction.INBOUND else "dst"

    def umbrella_chain(self, prefix: str) -> str:
        """Name of the umbrella chain for this direction, e.g. CHAOS-INPUT."""
        return f"{prefix}-{self.base_chain}"


def parse_direction(value: Union["Direction", str, int], *, chain: str = "") -> Direction:
    """Parse a direction from a request value.

    Accepts a Direction, a name ('input', 'INBOUND', 'out', ...) or the
    wire enum number (0 = input, 1 = output).

    Raises:
        InvalidDirection: For anything else
    """
    if isinstance(value, Direction):
        return value
    if isinstance(value, bool):
        raise InvalidDirection(value, chain=chain or None)
    if isinstance(value, int):
        if value == 0:
            return Direction.INBOUND
        if value == 1:
            return Direction.OUTBOUND
        raise InvalidDirection(value, chain=chain or None)
    if isinstance(value, str):
        name = _DIRECTION_ALIASES.get(value.strip().lower())
        if name:
            return Direction(name)
    raise InvalidDirection(value, chain=chain or None)


@dataclass
class ChainIntent:
    """Desired state of one custom chain.

    Attributes:
        name: Chain name, unique within a namespace
        direction: Direction the chain filters
        target: Verdict for matching packets (ACCEPT, DROP, a chain name)
        protocol: Protocol fragment, e.g. "--protocol tcp" (optional)
        source_ports: Source port fragment, e.g. "--sport 80" (optional)
        destination_ports: Destination port fragment (optional)
        ipsets: IP set names, one rule is rendered per set
    """
    name: str
    direction: Direction
    target: str
    protocol: str = ""
    source_ports: str = ""
    destination_ports: str = ""
    ipsets: list[str] = field(default_factory=list)

    def umbrella_chain(self, prefix: str) -> str:
        """Umbrella chain this chain is hooked into."""
        return _require_direction(self).umbrella_chain(prefix)


def _require_direction(intent: ChainIntent) -> Direction:
    direction = intent.direction
    if direction == Direction.INBOUND:
        return Direction.INBOUND
    if direction == Direction.OUTBOUND:
        return Direction.OUTBOUND
    raise InvalidDirection(direction, chain=intent.name)


def protocol_clause(intent: ChainIntent) -> str:
    """Build the protocol and port part of a rule.

    Ports are only meaningful with a protocol, so without one the clause
    is empty. Source ports come before destination ports.
    """
    if not intent.protocol:
        return ""

    parts = [intent.protocol]
    if intent.source_ports:
        parts.append(intent.source_ports)
    if intent.destination_ports:
        parts.append(intent.destination_ports)
    return " ".join(parts)


def render_rules(intent: ChainIntent) -> list[RenderedRule]:
    """Render an intent into rule specifications.

    Args:
        intent: Chain to render

    Returns:
        One rule per IP set, in IP set order, each appending to the
        intent's own chain

    Raises:
        InvalidDirection: If the intent's direction is not inbound/outbound
    """
    match_field = _require_direction(intent).match_field
    clause = protocol_clause(intent)

    rules = []
    for ipset in intent.ipsets:
        rule = f"-A {intent.name} -m set --match-set {ipset} {match_field} -j {intent.target}"
        if clause:
            rule = f"{rule} {clause}"
        rules.append(rule)
    return rules


def hook_rule(from_chain: str, to_chain: str) -> RenderedRule:
    """Rule that unconditionally jumps from one chain into another."""
    return f"-A {from_chain} -j {to_chain}"
