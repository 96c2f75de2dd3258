"""
AWS floating IP adapter.

Contrary to GCE, an EC2 VPC can have several route tables: the floating IP
destination is routed through the instance's ENI in every table of the
ENI's VPC selected by the reconciliation filter (all tables, minus main
tables with --ignore-main-table, restricted to --table when given).

Route changes are synchronous and ReplaceRoute swaps a route's target
atomically, so no transient absence happens on AWS.

IAM permissions required:
    - ec2:DescribeInstances
    - ec2:DescribeRouteTables
    - ec2:CreateRoute, ec2:ReplaceRoute, ec2:DeleteRoute
"""

import ipaddress
import logging
import os
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config
from .endpoint import EndpointCandidate, NetworkEndpoint
from .exceptions import EndpointNotFound, ProviderAPIError
from .hoster import Hoster, InstanceIdentity
from .metadata import EC2Metadata
from .reconciler import AtomicReplaceApplier, RouteRecord, RouteTableView
from .structured_events import StructuredEventLogger

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))

MAX_API_ATTEMPTS = 3


def is_main_table_associated(table: dict) -> bool:
    return any(assoc.get('Main') for assoc in table.get('Associations', []))


def route_destination(route: dict) -> Optional[str]:
    """The route destination as a normalized CIDR, None for prefix-list routes."""
    cidr = route.get('DestinationCidrBlock') or route.get('DestinationIpv6CidrBlock')
    if not cidr:
        return None
    return str(ipaddress.ip_network(cidr, strict=False))


def route_table_view(table: dict) -> RouteTableView:
    """Convert a DescribeRouteTables entry into a RouteTableView."""
    records = {}
    for route in table.get('Routes', []):
        destination = route_destination(route)
        if destination is None or destination in records:
            continue
        targets = tuple(route[key] for key in (
            'NetworkInterfaceId', 'InstanceId', 'GatewayId', 'NatGatewayId',
            'TransitGatewayId', 'VpcPeeringConnectionId',
        ) if route.get(key))
        records[destination] = RouteRecord(destination=destination, targets=targets)
    return RouteTableView(
        table_id=table['RouteTableId'],
        records=tuple(records.values()),
        main=is_main_table_associated(table),
    )


class AWSHoster(Hoster, AtomicReplaceApplier):
    """Floating IP through EC2 VPC route tables."""

    name = "aws"
    required_identity = ("region", "instance")

    def __init__(self, cfg: Config, structured_logger: Optional[StructuredEventLogger] = None,
                 metadata: Optional[EC2Metadata] = None, session: Optional[boto3.Session] = None):
        super().__init__(cfg, structured_logger)
        self.metadata = metadata or EC2Metadata()
        self.session = session
        self.ec2 = None
        self.vpc: Optional[str] = None

    def on_this_hoster(self) -> bool:
        return self.metadata.available()

    def _resolve_identity(self) -> InstanceIdentity:
        return InstanceIdentity(
            instance=self.cfg.instance or self.metadata.instance_id(),
            region=self.cfg.region or self.metadata.region(),
        )

    def _connect(self) -> None:
        if self.session is None:
            if self.cfg.access_key:
                self.session = boto3.Session(
                    aws_access_key_id=self.cfg.access_key,
                    aws_secret_access_key=self.cfg.secret_key,
                    region_name=self.identity.region,
                )
            else:
                self.session = boto3.Session(region_name=self.identity.region)
        try:
            self.ec2 = self.session.client(
                'ec2',
                region_name=self.identity.region,
                config=BotoConfig(retries={'max_attempts': MAX_API_ATTEMPTS}),
            )
        except BotoCoreError as e:
            raise ProviderAPIError("Failed to initialize an AWS session", cause=e) from e

    def _instance_ref(self) -> str:
        return self.identity.instance

    def _endpoint_candidates(self) -> List[EndpointCandidate]:
        try:
            resp = self.ec2.describe_instances(InstanceIds=[self.identity.instance])
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError("Failed to DescribeInstances", cause=e) from e

        instances = [i for r in resp.get('Reservations', []) for i in r.get('Instances', [])]
        if not instances:
            raise EndpointNotFound(f"Instance {self.identity.instance} not found")

        candidates = []
        for eni in instances[0].get('NetworkInterfaces', []):
            private_ips = [p['PrivateIpAddress'] for p in eni.get('PrivateIpAddresses', [])
                           if p.get('PrivateIpAddress')]
            if eni.get('PrivateIpAddress') and eni['PrivateIpAddress'] not in private_ips:
                private_ips.insert(0, eni['PrivateIpAddress'])
            candidates.append(EndpointCandidate(
                endpoint_id=eni['NetworkInterfaceId'],
                subnet_ids=(eni.get('SubnetId', ''),),
                private_ips=tuple(private_ips),
                state=eni.get('Status', 'in-use'),
                network=eni.get('VpcId', ''),
            ))
        return candidates

    def _snapshot_tables(self) -> List[RouteTableView]:
        self.vpc = self.endpoint.network
        try:
            paginator = self.ec2.get_paginator('describe_route_tables')
            tables = []
            for page in paginator.paginate(Filters=[{'Name': 'vpc-id', 'Values': [self.vpc]}]):
                tables.extend(page.get('RouteTables', []))
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError("Failed to DescribeRouteTables", cause=e) from e

        logger.debug(f"Found {len(tables)} route tables in VPC {self.vpc}")
        return [route_table_view(t) for t in tables]

    @staticmethod
    def _destination_args(destination: str) -> dict:
        if ipaddress.ip_network(destination).version == 6:
            return {'DestinationIpv6CidrBlock': destination}
        return {'DestinationCidrBlock': destination}

    def create_route(self, table: RouteTableView, destination: str, endpoint: NetworkEndpoint) -> None:
        try:
            self.ec2.create_route(
                RouteTableId=table.table_id,
                NetworkInterfaceId=endpoint.endpoint_id,
                **self._destination_args(destination),
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError("Failed to create route", table_id=table.table_id, cause=e) from e

    def replace_route(self, table: RouteTableView, destination: str, endpoint: NetworkEndpoint) -> None:
        try:
            self.ec2.replace_route(
                RouteTableId=table.table_id,
                NetworkInterfaceId=endpoint.endpoint_id,
                **self._destination_args(destination),
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError("Failed to replace route", table_id=table.table_id, cause=e) from e

    def delete_route(self, table: RouteTableView, destination: str) -> None:
        try:
            self.ec2.delete_route(RouteTableId=table.table_id, **self._destination_args(destination))
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError("Failed to delete route", table_id=table.table_id, cause=e) from e
