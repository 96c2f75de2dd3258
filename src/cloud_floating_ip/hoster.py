"""
Hosting provider adapter base.

A Hoster turns the abstract floating IP operations (status, preempt,
destroy) into one cloud provider's API calls. Subclasses provide identity
guessing, the instance's endpoint candidates, a snapshot of the route
tables and the route mutation primitives (RouteApplier); the shared
initialization sequence and the operations themselves live here.

Initialization sequence:
    1. Check required identity fields when not running on the provider
    2. Guess missing identity fields from instance metadata
    3. Build the authenticated provider client
    4. Resolve the network endpoint the floating IP routes through
    5. Snapshot route tables and apply the reconciliation filter
"""

import logging
import os
from abc import abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .config import Config
from .endpoint import Disambiguator, EndpointCandidate, NetworkEndpoint, resolve_endpoint
from .exceptions import ConfigurationError, FloatingIPError
from .reconciler import ReconciliationFilter, RouteAction, RouteApplier, RouteSetReconciler, RouteTableView
from .structured_events import StructuredEventLogger

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))


@dataclass(frozen=True)
class InstanceIdentity:
    """Who this instance is, resolved once per invocation."""
    instance: str
    project: str = ""
    region: str = ""
    zone: str = ""


class Hoster(RouteApplier):
    """Base class for hosting provider adapters."""

    name = ""
    # Config fields that must be supplied when not running on the provider
    required_identity: Tuple[str, ...] = ()

    def __init__(self, cfg: Config, structured_logger: Optional[StructuredEventLogger] = None):
        self.cfg = cfg
        self.structured_logger = structured_logger
        self.identity: Optional[InstanceIdentity] = None
        self.endpoint: Optional[NetworkEndpoint] = None
        self.reconciler: Optional[RouteSetReconciler] = None

    @abstractmethod
    def on_this_hoster(self) -> bool:
        """True when the current process runs on an instance of this provider."""

    @abstractmethod
    def _resolve_identity(self) -> InstanceIdentity:
        """Fill identity fields missing from the config from instance metadata."""

    @abstractmethod
    def _connect(self) -> None:
        """Build the authenticated provider client."""

    @abstractmethod
    def _instance_ref(self) -> str:
        """The instance reference as it appears in route targets."""

    @abstractmethod
    def _endpoint_candidates(self) -> List[EndpointCandidate]:
        ...

    @abstractmethod
    def _snapshot_tables(self) -> Sequence[RouteTableView]:
        ...

    def check_missing_params(self) -> None:
        missing = [f for f in self.required_identity if not getattr(self.cfg, f)]
        if not missing or self.on_this_hoster():
            return
        raise ConfigurationError(
            f"When not running on a {self.name} instance, you must provide "
            f"{', '.join(self.required_identity)} (missing: {', '.join(missing)})"
        )

    def initialize(self) -> None:
        self.check_missing_params()
        self.identity = self._resolve_identity()
        logger.debug(f"{self.name} instance identity: {self.identity}")
        self._connect()

        disambiguator = Disambiguator.from_options(
            interface=self.cfg.interface, subnet=self.cfg.subnet, target_ip=self.cfg.target_ip)
        self.endpoint = resolve_endpoint(self._instance_ref(), self._endpoint_candidates(), disambiguator)

        tables = ReconciliationFilter(
            ignore_main=self.cfg.ignore_main_table,
            allow_list=self.cfg.route_tables,
        ).apply(self._snapshot_tables())

        self.reconciler = RouteSetReconciler(
            tables=tables,
            destination=self.cfg.destination,
            endpoint=self.endpoint,
            applier=self,
            dry_run=self.cfg.dry_run,
            provider=self.name,
            structured_logger=self.structured_logger,
        )

    def _require_reconciler(self) -> RouteSetReconciler:
        if self.reconciler is None:
            raise FloatingIPError(f"{self.name} hoster used before initialize()")
        return self.reconciler

    def status(self) -> bool:
        return self._require_reconciler().status()

    def preempt(self) -> List[RouteAction]:
        return self._require_reconciler().preempt()

    def destroy(self) -> List[RouteAction]:
        return self._require_reconciler().destroy()
