"""
Network endpoint resolution.

An instance may be attached to its network(s) through several interfaces.
The floating IP must be routed through exactly one of them. Providers list
their instance's interfaces as EndpointCandidate values; resolve_endpoint()
picks the one to use, optionally narrowed by a Disambiguator built from the
--interface / --subnet / --target-ip options.

Resolution rules:
    - Only candidates in an attached state are considered.
    - No candidate: EndpointNotFound.
    - One candidate, no disambiguator: that candidate.
    - Several candidates, no disambiguator: AmbiguousEndpoint.
    - Disambiguator: exact match on the selected attribute; no match is
      EndpointNotFound. When a provider returns several matches for the same
      value, the first one in provider order wins.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from .exceptions import AmbiguousEndpoint, ConfigurationError, EndpointNotFound

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))

ATTACHED_STATES = ("in-use", "attached")


class SelectorKind(Enum):
    INTERFACE = "interface"
    SUBNET = "subnet"
    PRIVATE_IP = "target-ip"


@dataclass(frozen=True)
class Disambiguator:
    """Selects one endpoint among several by interface, subnet or private IP."""
    kind: SelectorKind
    value: str

    @classmethod
    def from_options(cls, interface: str = '', subnet: str = '',
                     target_ip: str = '') -> Optional['Disambiguator']:
        """
        Build a disambiguator from the endpoint selection options.

        Returns None when no option is set. Supplying more than one option
        is a configuration error since the selectors are mutually exclusive.
        """
        supplied = [(kind, value) for kind, value in (
            (SelectorKind.INTERFACE, interface),
            (SelectorKind.SUBNET, subnet),
            (SelectorKind.PRIVATE_IP, target_ip),
        ) if value]
        if not supplied:
            return None
        if len(supplied) > 1:
            names = ", ".join(f"--{kind.value}" for kind, _ in supplied)
            raise ConfigurationError(f"Options {names} are mutually exclusive")
        kind, value = supplied[0]
        return cls(kind=kind, value=value)


@dataclass(frozen=True)
class EndpointCandidate:
    """
    One network attachment point of an instance as reported by the provider.

    Attributes:
        endpoint_id: Provider handle routes can target (ENI id, GCE nic name).
        subnet_ids: Identifiers the subnet can be matched by (id, name, link).
        private_ips: Private addresses carried by the interface.
        state: Provider attachment state ("in-use", "attached", ...).
        network: The network (VPC id, GCE network link) the interface lives in.
    """
    endpoint_id: str
    subnet_ids: Tuple[str, ...] = ()
    private_ips: Tuple[str, ...] = ()
    state: str = "in-use"
    network: str = ""

    def matches(self, disambiguator: Disambiguator) -> bool:
        if disambiguator.kind is SelectorKind.INTERFACE:
            return disambiguator.value == self.endpoint_id
        if disambiguator.kind is SelectorKind.SUBNET:
            return disambiguator.value in self.subnet_ids
        return disambiguator.value in self.private_ips


@dataclass(frozen=True)
class NetworkEndpoint:
    """The resolved attachment point of this instance. Never mutated once resolved."""
    endpoint_id: str
    instance: str
    network: str = ""
    private_ips: Tuple[str, ...] = ()


def resolve_endpoint(instance: str,
                     candidates: Iterable[EndpointCandidate],
                     disambiguator: Optional[Disambiguator] = None) -> NetworkEndpoint:
    """
    Pick the network endpoint the floating IP should be routed through.

    Args:
        instance: Instance reference the endpoint belongs to.
        candidates: Interfaces reported by the provider for this instance.
        disambiguator: Optional selector for multi-interface instances.

    Returns:
        NetworkEndpoint: The selected endpoint.

    Raises:
        EndpointNotFound: No attached candidate, or none matches the selector.
        AmbiguousEndpoint: Several candidates and no selector.
    """
    attached = [c for c in candidates if c.state in ATTACHED_STATES]

    if not attached:
        raise EndpointNotFound(f"No attached network interface found for instance {instance}")

    if disambiguator is None:
        if len(attached) > 1:
            raise AmbiguousEndpoint(instance, [c.endpoint_id for c in attached])
        chosen = attached[0]
    else:
        matching = [c for c in attached if c.matches(disambiguator)]
        if not matching:
            raise EndpointNotFound(
                f"No network interface of instance {instance} matches "
                f"{disambiguator.kind.value} {disambiguator.value}"
            )
        chosen = matching[0]

    logger.debug(f"Resolved network endpoint {chosen.endpoint_id} for instance {instance}")
    return NetworkEndpoint(
        endpoint_id=chosen.endpoint_id,
        instance=instance,
        network=chosen.network,
        private_ips=chosen.private_ips,
    )
