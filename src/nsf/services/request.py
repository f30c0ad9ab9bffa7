"""Chain request files.

The request names the chains a namespace should contain, in YAML or
JSON (JSON is read by the YAML loader):

    chains:
      - name: CHAOS-IN-web
        direction: input
        target: DROP
        protocol: tcp
        source_ports: "--sport 80"
        ipsets: [setA, setB]
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from nsf.core.exceptions import ValidationError
from nsf.core.validation import (
    validate_chain_name,
    validate_ipset_name,
    validate_rule_fragment,
    validate_target,
)
from nsf.services.rules import ChainIntent, parse_direction


# Protocol names that are expanded to an iptables option
PROTOCOL_NAMES = frozenset({"tcp", "udp", "icmp", "icmpv6", "sctp", "udplite", "all"})


def _as_value_error(validator, value):
    try:
        return validator(value)
    except ValidationError as e:
        raise ValueError(e.message) from e


class ChainSpec(BaseModel):
    """One chain entry of a request file."""

    name: str
    # Kept raw, parse_direction decides (YAML booleans are invalid)
    direction: Any
    target: str
    protocol: str = ""
    source_ports: str = ""
    destination_ports: str = ""
    ipsets: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _as_value_error(validate_chain_name, v)

    @field_validator("target")
    @classmethod
    def check_target(cls, v: str) -> str:
        return _as_value_error(validate_target, v)

    @field_validator("ipsets")
    @classmethod
    def check_ipsets(cls, v: list[str]) -> list[str]:
        return [_as_value_error(validate_ipset_name, name) for name in v]

    @field_validator("protocol")
    @classmethod
    def check_protocol(cls, v: str) -> str:
        v = _as_value_error(lambda s: validate_rule_fragment(s, "protocol"), v)
        if v.lower() in PROTOCOL_NAMES:
            return f"--protocol {v.lower()}"
        return v

    @field_validator("source_ports", "destination_ports")
    @classmethod
    def check_ports(cls, v: str) -> str:
        return _as_value_error(lambda s: validate_rule_fragment(s, "port option"), v)

    def to_intent(self) -> ChainIntent:
        """Convert to a ChainIntent.

        Raises:
            InvalidDirection: If the direction is not input or output
        """
        return ChainIntent(
            name=self.name,
            direction=parse_direction(self.direction, chain=self.name),
            target=self.target,
            protocol=self.protocol,
            source_ports=self.source_ports,
            destination_ports=self.destination_ports,
            ipsets=list(self.ipsets),
        )


class ChainRequest(BaseModel):
    """A full request: the chains one namespace should contain."""

    chains: list[ChainSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_names(self) -> "ChainRequest":
        seen: set[str] = set()
        for spec in self.chains:
            if spec.name in seen:
                raise ValueError(f"Chain {spec.name} is listed more than once")
            seen.add(spec.name)
        return self

    def to_intents(self) -> list[ChainIntent]:
        return [spec.to_intent() for spec in self.chains]


def _format_errors(error: PydanticValidationError) -> list[str]:
    details = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        details.append(f"{location}: {item['msg']}" if location else item["msg"])
    return details


def parse_request(data: object, source: str = "request") -> list[ChainIntent]:
    """Validate already-loaded request data and return its intents.

    A bare list is accepted as the chains list.

    Raises:
        ValidationError: If the data does not describe valid chains
        InvalidDirection: If a chain has an unknown direction
    """
    if isinstance(data, list):
        data = {"chains": data}
    if not isinstance(data, dict):
        raise ValidationError(
            f"Invalid {source}: expected a mapping with a 'chains' list",
        )

    try:
        request = ChainRequest(**data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {source}",
            details=_format_errors(e),
        ) from e

    return request.to_intents()


def load_request(path: Path) -> list[ChainIntent]:
    """Load chain intents from a YAML or JSON file.

    Raises:
        ValidationError: If the file is missing, unparsable or invalid
        InvalidDirection: If a chain has an unknown direction
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ValidationError(f"Request file not found: {path}")
    except yaml.YAMLError as e:
        raise ValidationError(
            f"Invalid YAML/JSON in request file: {path}",
            details=[str(e)],
        ) from e
    except OSError as e:
        raise ValidationError(
            f"Cannot read request file: {path}",
            details=[str(e)],
        ) from e

    return parse_request(data or {}, source=f"request file {path}")
