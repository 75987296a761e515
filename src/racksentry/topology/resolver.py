#!/usr/bin/env python3
"""
Topology Resolver for RackSentry

Learns this node's datacenter and rack from the instance metadata service and
answers placement queries for other nodes from live membership state, then
persisted history, then sentinel defaults.
"""

import logging
import threading
from types import MappingProxyType
from typing import Mapping, Optional

from racksentry.common.exceptions import StateSourceError
from racksentry.common.metadata_client import MetadataFetcher, REGION_NAME_QUERY_URL, ZONE_NAME_QUERY_URL
from racksentry.topology.endpoint import (
    DEFAULT_DC,
    DEFAULT_RACK,
    ApplicationState,
    NodeAddress,
    PeerPlacement,
    TopologyLabel,
)
from racksentry.topology.state_sources import MembershipState, PersistedTopologyStore

logger = logging.getLogger("TopologyResolver")


class TopologyResolver:
    """
    Maps cluster nodes to datacenter and rack labels.

    An Azure region is a datacenter and an availability zone is a rack. The
    local placement is fetched once at construction; a node that cannot learn
    its own placement must not start, so construction errors propagate.
    """

    def __init__(self, local_address: NodeAddress, fetcher: MetadataFetcher,
                 membership: Optional[MembershipState] = None,
                 store: Optional[PersistedTopologyStore] = None,
                 dc_suffix: str = ""):
        """
        Initialize the resolver

        Args:
            local_address: Address this node is known by in the cluster
            fetcher: Callable returning the body of a metadata URL
            membership: Live membership state for other nodes
            store: Persisted placement history for other nodes
            dc_suffix: Appended to the region to form the datacenter name

        Raises:
            MetadataError: Region or zone could not be fetched
        """
        region = fetcher(REGION_NAME_QUERY_URL)
        zone = fetcher(ZONE_NAME_QUERY_URL)

        self.local_address = local_address
        self.datacenter = region + (dc_suffix or "")
        self.rack = zone

        self.membership = membership
        self.store = store

        # Loaded on first miss and never refreshed
        self._saved_endpoints: Optional[Mapping[NodeAddress, PeerPlacement]] = None
        self._saved_lock = threading.Lock()

        logger.info(f"Using region: {self.datacenter}, zone: {self.rack}")

    @property
    def local_label(self) -> TopologyLabel:
        return TopologyLabel(self.datacenter, self.rack)

    def get_rack(self, endpoint: NodeAddress) -> str:
        if endpoint == self.local_address:
            return self.rack
        return self._resolve(endpoint, ApplicationState.RACK, DEFAULT_RACK)

    def get_datacenter(self, endpoint: NodeAddress) -> str:
        if endpoint == self.local_address:
            return self.datacenter
        return self._resolve(endpoint, ApplicationState.DC, DEFAULT_DC)

    def get_label(self, endpoint: NodeAddress) -> TopologyLabel:
        return TopologyLabel(self.get_datacenter(endpoint), self.get_rack(endpoint))

    def _resolve(self, endpoint: NodeAddress, key: ApplicationState, default: str) -> str:
        live = self._live_state(endpoint, key)
        if live is not None:
            return live

        placement = self._saved_endpoints_snapshot().get(endpoint)
        if placement is not None:
            return placement.datacenter if key is ApplicationState.DC else placement.rack

        return default

    def _live_state(self, endpoint: NodeAddress, key: ApplicationState) -> Optional[str]:
        if self.membership is None:
            return None

        try:
            return self.membership.get_application_state(endpoint, key)
        except StateSourceError as e:
            logger.warning(f"Membership state unavailable for {endpoint}: {e}")
            return None

    def _saved_endpoints_snapshot(self) -> Mapping[NodeAddress, PeerPlacement]:
        saved = self._saved_endpoints
        if saved is not None:
            return saved

        if self.store is None:
            return {}

        with self._saved_lock:
            if self._saved_endpoints is None:
                try:
                    loaded = MappingProxyType(dict(self.store.load_all()))
                except StateSourceError as e:
                    # Not cached, the next miss tries again
                    logger.warning(f"Persisted topology unavailable: {e}")
                    return {}
                self._saved_endpoints = loaded
                logger.debug(f"Cached {len(loaded)} persisted placements")
            return self._saved_endpoints
