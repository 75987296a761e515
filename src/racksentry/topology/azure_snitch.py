#!/usr/bin/env python3
"""
Azure Snitch for RackSentry

A snitch that treats an Azure region as a datacenter and an Azure
availability zone as a rack. This information is available in the instance
metadata of the VM, so no mapping file has to be maintained by hand.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import Iterable, Optional, Set, Union

from racksentry.common.configuration_manager import (
    SnitchProperties,
    configure_logging,
    create_default_config,
)
from racksentry.common.exceptions import RackSentryError
from racksentry.common.metadata_client import MetadataClient, MetadataFetcher
from racksentry.topology.endpoint import NodeAddress, TopologyLabel
from racksentry.topology.resolver import TopologyResolver
from racksentry.topology.state_sources import (
    FallbackTopologyStore,
    FileTopologyStore,
    MembershipState,
    PersistedTopologyStore,
    RedisMembershipState,
    RedisTopologyStore,
    init_redis_client,
)
from racksentry.topology.validator import TopologyValidator, validate_topology

logger = logging.getLogger("AzureSnitch")


class AzureSnitch:
    """
    Resolves and validates cluster placement from Azure instance metadata.

    Construction performs two metadata calls and raises if this node cannot
    learn its own region.
    """

    def __init__(self, properties: Optional[SnitchProperties] = None,
                 fetcher: Optional[MetadataFetcher] = None,
                 membership: Optional[MembershipState] = None,
                 store: Optional[PersistedTopologyStore] = None):
        """
        Initialize the snitch

        Args:
            properties: Snitch configuration, defaults if not given
            fetcher: Metadata fetcher, an HTTP client if not given
            membership: Live membership state for other nodes
            store: Persisted placement history for other nodes
        """
        self.properties = properties or SnitchProperties()

        self.client = None
        if fetcher is None:
            self.client = MetadataClient(timeout=self.properties.get("metadata_timeout", 5.0))
            fetcher = self.client.fetch

        try:
            self.local_address = NodeAddress.from_string(self.properties.get("broadcast_address"))
            self.resolver = TopologyResolver(
                self.local_address,
                fetcher,
                membership=membership,
                store=store,
                dc_suffix=self.properties.get("dc_suffix", "")
            )
        except Exception:
            self.close()
            raise

        self.validator = TopologyValidator(fetcher)

    @classmethod
    def from_config(cls, config_path: Optional[Union[str, Path]] = None) -> 'AzureSnitch':
        """Build a snitch with collaborators chosen from the configuration file"""
        return cls.from_properties(SnitchProperties.from_file(config_path))

    @classmethod
    def from_properties(cls, properties: SnitchProperties) -> 'AzureSnitch':
        """Build a snitch backed by Redis and the peers file as configured"""
        membership = None
        stores = []

        if properties.get("redis_enabled", True):
            redis_client = init_redis_client(properties.get_all())
            if redis_client:
                namespace = properties.get("redis_namespace", "racksentry")
                membership = RedisMembershipState(redis_client, namespace)
                stores.append(RedisTopologyStore(redis_client, namespace))

        topology_file = properties.get("topology_file")
        if topology_file:
            stores.append(FileTopologyStore(topology_file))

        store = FallbackTopologyStore(*stores) if stores else None

        return cls(properties, membership=membership, store=store)

    @property
    def datacenter(self) -> str:
        return self.resolver.datacenter

    @property
    def rack(self) -> str:
        return self.resolver.rack

    def get_rack(self, endpoint: NodeAddress) -> str:
        return self.resolver.get_rack(endpoint)

    def get_datacenter(self, endpoint: NodeAddress) -> str:
        return self.resolver.get_datacenter(endpoint)

    def get_label(self, endpoint: NodeAddress) -> TopologyLabel:
        return self.resolver.get_label(endpoint)

    def validate(self, datacenters: Iterable[str], racks: Iterable[str]) -> bool:
        """Check names against the locations Azure currently publishes"""
        return self.validator.validate(datacenters, racks)

    def validate_locations(self, datacenters: Iterable[str], racks: Iterable[str], locations: Set[str]) -> bool:
        """Check names against an already known set of locations"""
        return validate_topology(datacenters, racks, locations)

    def close(self):
        if self.client:
            self.client.close()


def _split_names(value: Optional[str]) -> Set[str]:
    """Split a comma-separated list, keeping empty entries as empty rack names"""
    if value is None:
        return set()
    return {name.strip() for name in value.split(",")}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="RackSentry Azure Snitch")
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--create-config", help="Create default configuration file")
    parser.add_argument("--endpoint", action="append", default=[],
                        help="Resolve datacenter and rack of a node (host:port), may be repeated")
    parser.add_argument("--validate", action="store_true", help="Validate datacenter and rack names")
    parser.add_argument("--datacenters", help="Comma-separated datacenter names to validate")
    parser.add_argument("--racks", help="Comma-separated rack names to validate")
    args = parser.parse_args(argv)

    # Create default configuration file if requested
    if args.create_config:
        create_default_config(args.create_config)
        print(f"Created default snitch configuration at {args.create_config}")
        return 0

    try:
        properties = SnitchProperties.from_file(args.config)
    except RackSentryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    configure_logging(properties.get("log_level", "INFO"), properties.get("log_file"))

    try:
        endpoints = [NodeAddress.from_string(value) for value in args.endpoint]
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        snitch = AzureSnitch.from_properties(properties)
    except (RackSentryError, ValueError) as e:
        logger.error(f"Unable to determine local topology: {e}")
        return 2

    try:
        local = snitch.resolver.local_label
        print(f"Local node {snitch.local_address}: datacenter={local.datacenter} rack={local.rack}")

        for endpoint in endpoints:
            label = snitch.get_label(endpoint)
            print(f"{endpoint}: datacenter={label.datacenter} rack={label.rack}")

        if args.validate:
            datacenters = _split_names(args.datacenters)
            racks = _split_names(args.racks)
            if snitch.validate(datacenters, racks):
                print("Topology names are valid")
            else:
                print("Topology names are not valid for Azure")
                return 1
    finally:
        snitch.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
