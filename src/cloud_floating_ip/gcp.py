"""
Google Compute Engine Floating IP Adapter

This module implements floating IP ownership on GCE through a single custom
route per floating IP:

    name:            cloud-floating-ip-rule-for-<ip with dots replaced by dashes>
    destRange:       <ip>/32
    network:         the instance's VPC network
    nextHopInstance: the instance's self link

Owning the IP means the route exists in our network and its next hop is our
instance. GCE routes are global to a project network, so the adapter
exposes exactly one routing container (the network) to the reconciler.

Route Replacement:
    The Compute API has no route update call. Moving the route to this
    instance is a delete followed by an insert, during which the destination
    has no route at all (see reconciler.py, DELETE_THEN_INSERT). A 404 on the
    delete step is tolerated: someone else removed the route meanwhile.

Asynchronous Operations:
    routes.insert and routes.delete return a global Operation that is polled
    once a second for up to two minutes by operation.wait_for_operation().

Authentication:
    - Workload Identity / Application Default Credentials (recommended):
      the instance's service account, or GOOGLE_APPLICATION_CREDENTIALS
    - Service account key file (--gcp-credentials)

IAM Permissions Required:
    - compute.instances.get
    - compute.routes.get, compute.routes.create, compute.routes.delete
    - compute.networks.updatePolicy (to create routes in the network)
    - compute.globalOperations.get
"""

import ipaddress
import logging
import os
from typing import List, Optional

import google.auth
import google.auth.transport.requests
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import Config
from .endpoint import EndpointCandidate, NetworkEndpoint
from .exceptions import EndpointNotFound, OperationFailed, OperationTimeout, ProviderAPIError
from .hoster import Hoster, InstanceIdentity
from .metadata import GCEMetadata
from .operation import WaitOutcome, wait_for_operation
from .reconciler import RouteRecord, RouteTableView
from .structured_events import StructuredEventLogger

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))

GCP_API_VERSION = "v1"
COMPUTE_SCOPE = "https://www.googleapis.com/auth/compute"
INSTANCE_SELF_LINK = "https://www.googleapis.com/compute/v1/projects/{project}/zones/{zone}/instances/{instance}"
ROUTE_PREFIX = "cloud-floating-ip-rule-for-"
HTTP_NOT_FOUND = 404


def build_compute_client(creds_path: Optional[str] = None, use_workload_identity: Optional[bool] = None):
    """
    Initialize a Google Compute Engine API client.

    Authentication Modes:
        - Workload Identity / Application Default Credentials, used when
          use_workload_identity is True or when no creds_path is given.
        - Service account key file at creds_path otherwise.

    Args:
        creds_path (str, optional): Path to a service account JSON key file.
        use_workload_identity (bool, optional): Force Application Default Credentials.

    Returns:
        googleapiclient.discovery.Resource: Authenticated Compute Engine v1 client.

    Raises:
        FileNotFoundError: If creds_path does not exist.
        PermissionError: If creds_path is not readable.
        google.auth.exceptions.GoogleAuthError: If credentials cannot be loaded or refreshed.
    """
    if use_workload_identity or not creds_path:
        logger.debug("Using Application Default Credentials for GCP authentication")
        creds, detected_project = google.auth.default(scopes=[COMPUTE_SCOPE])
        creds.refresh(google.auth.transport.requests.Request())
        if detected_project:
            logger.debug(f"Application Default Credentials project: {detected_project}")
    else:
        if not os.path.exists(creds_path):
            error_msg = f"GCP credentials file not found: {creds_path}"
            logger.error(error_msg)
            raise FileNotFoundError(error_msg)

        if not os.access(creds_path, os.R_OK):
            error_msg = f"GCP credentials file not readable: {creds_path}"
            logger.error(error_msg)
            raise PermissionError(error_msg)

        logger.debug(f"Loading GCP service account credentials from: {creds_path}")
        creds = service_account.Credentials.from_service_account_file(creds_path, scopes=[COMPUTE_SCOPE])

    # cache_discovery=False prevents caching discovery documents to disk
    compute = build(
        serviceName='compute',
        version=GCP_API_VERSION,
        credentials=creds,
        cache_discovery=False
    )
    logger.debug("GCP Compute Engine client initialized successfully")
    return compute


def route_name(ip: str) -> str:
    """GCE route name managed for the floating IP (dots and colons become dashes)."""
    address = str(ipaddress.ip_address(ip.split('/')[0]))
    return (ROUTE_PREFIX + address).replace('.', '-').replace(':', '-')


def short_name(link: str) -> str:
    """Last path component of a GCE resource link."""
    return link.rstrip('/').rsplit('/', 1)[-1] if link else ''


class GCEHoster(Hoster):
    """Floating IP through a GCE custom route."""

    name = "gce"
    required_identity = ("project", "zone", "instance")

    def __init__(self, cfg: Config, structured_logger: Optional[StructuredEventLogger] = None,
                 metadata: Optional[GCEMetadata] = None, compute=None, sleep=None):
        super().__init__(cfg, structured_logger)
        self.metadata = metadata or GCEMetadata()
        self.compute = compute
        self.route = route_name(cfg.ip) if cfg.ip else ''
        self.selflink = ''
        self._sleep = sleep

    def on_this_hoster(self) -> bool:
        return self.metadata.available()

    def _resolve_identity(self) -> InstanceIdentity:
        identity = InstanceIdentity(
            project=self.cfg.project or self.metadata.project_id(),
            instance=self.cfg.instance or self.metadata.instance_name(),
            zone=self.cfg.zone or self.metadata.zone(),
        )
        self.selflink = INSTANCE_SELF_LINK.format(
            project=identity.project, zone=identity.zone, instance=identity.instance)
        return identity

    def _connect(self) -> None:
        if self.compute is None:
            self.compute = build_compute_client(
                creds_path=self.cfg.gcp_credentials,
                use_workload_identity=self.cfg.use_workload_identity,
            )

    def _instance_ref(self) -> str:
        return self.selflink

    def _endpoint_candidates(self) -> List[EndpointCandidate]:
        try:
            inst = self.compute.instances().get(
                project=self.identity.project,
                zone=self.identity.zone,
                instance=self.identity.instance,
            ).execute()
        except HttpError as e:
            if e.resp.status == HTTP_NOT_FOUND:
                raise EndpointNotFound(f"Instance {self.identity.instance} not found in "
                                       f"{self.identity.project}/{self.identity.zone}") from e
            raise ProviderAPIError("Failed to guess network link", cause=e) from e
        except Exception as e:
            raise ProviderAPIError(f"Failed to get instance {self.identity.instance}", cause=e) from e

        candidates = []
        for nic in inst.get('networkInterfaces', []):
            subnetwork = nic.get('subnetwork', '')
            candidates.append(EndpointCandidate(
                endpoint_id=nic.get('name', ''),
                subnet_ids=tuple(s for s in (subnetwork, short_name(subnetwork)) if s),
                private_ips=tuple(ip for ip in (nic.get('networkIP'),) if ip),
                state="attached",
                network=nic.get('network', ''),
            ))
        return candidates

    def _snapshot_tables(self) -> List[RouteTableView]:
        network = self.endpoint.network
        try:
            route = self.compute.routes().get(project=self.identity.project, route=self.route).execute()
        except HttpError as e:
            # Route not found is ok, means we don't "own" the IP
            if e.resp.status != HTTP_NOT_FOUND:
                raise ProviderAPIError(f"Failed to get route {self.route}", table_id=short_name(network),
                                       cause=e) from e
            route = None
        except Exception as e:
            raise ProviderAPIError(f"Failed to get route {self.route}", table_id=short_name(network),
                                   cause=e) from e

        records = ()
        if route is not None:
            records = (self._route_record(route, network),)
        return [RouteTableView(table_id=short_name(network), records=records)]

    def _route_record(self, route: dict, network: str) -> RouteRecord:
        destination = self.cfg.destination
        targets = tuple(t for t in (route.get('nextHopInstance'),) if t)
        dest_range = route.get('destRange', '')
        try:
            same_destination = str(ipaddress.ip_network(dest_range, strict=False)) == destination
        except ValueError:
            same_destination = False
        if not same_destination or short_name(route.get('network', '')) != short_name(network):
            # Our route name but another destination or network: it must be recreated
            logger.warning(f"Route {self.route} points {dest_range} in network "
                           f"{short_name(route.get('network', ''))}, expected {destination} "
                           f"in {short_name(network)}")
            targets = ()
        return RouteRecord(destination=destination, targets=targets, name=route.get('name'))

    def _wait(self, operation: dict, table_id: str) -> None:
        name = operation.get('name', 'unknown')

        def fetch():
            try:
                return self.compute.globalOperations().get(
                    project=self.identity.project, operation=name).execute()
            except Exception as e:
                raise ProviderAPIError(f"Failed to get operation {name}", table_id=table_id, cause=e) from e

        kwargs = {'structured_logger': self.structured_logger}
        if self._sleep is not None:
            kwargs['sleep'] = self._sleep
        result = wait_for_operation(fetch, name, **kwargs)

        if result.outcome is WaitOutcome.ERROR:
            raise OperationFailed(name, result.error, table_id=table_id)
        if result.outcome is WaitOutcome.TIMEOUT:
            raise OperationTimeout(name, result.attempts, table_id=table_id)

    def create_route(self, table: RouteTableView, destination: str, endpoint: NetworkEndpoint) -> None:
        body = {
            'name': self.route,
            'description': f"cloud-floating-ip route for {self.cfg.ip}",
            'network': endpoint.network,
            'destRange': destination,
            'nextHopInstance': self.selflink,
        }
        try:
            operation = self.compute.routes().insert(project=self.identity.project, body=body).execute()
        except Exception as e:
            # HttpError as well as transport and credential refresh failures
            raise ProviderAPIError("Failed to create the route", table_id=table.table_id, cause=e) from e
        self._wait(operation, table.table_id)

    def delete_route(self, table: RouteTableView, destination: str) -> None:
        try:
            operation = self.compute.routes().delete(project=self.identity.project, route=self.route).execute()
        except HttpError as e:
            if e.resp.status == HTTP_NOT_FOUND:
                logger.debug(f"Route {self.route} already deleted")
                return
            raise ProviderAPIError("Failed to delete an existing route", table_id=table.table_id,
                                   cause=e) from e
        except Exception as e:
            raise ProviderAPIError("Failed to delete an existing route", table_id=table.table_id,
                                   cause=e) from e
        self._wait(operation, table.table_id)
