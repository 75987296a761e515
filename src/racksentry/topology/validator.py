#!/usr/bin/env python3
"""
Topology Validator for RackSentry

Checks configured datacenter and rack names against the locations the cloud
provider publishes. Validation is advisory: when the location list cannot be
fetched it falls back to a structural check instead of failing.
"""

import re
import json
import logging
from typing import Any, Iterable, Set

from racksentry.common.exceptions import MalformedMetadata
from racksentry.common.metadata_client import MetadataFetcher, MANAGEMENT_ENDPOINTS_QUERY_URL

logger = logging.getLogger("TopologyValidator")

# Region names by inspection: "eastus", "westus2", "centralus"
DATACENTER_PATTERN = re.compile(r"[a-z]+[0-9]?")

# Availability zones are single digits
RACK_PATTERN = re.compile(r"[0-9]")


def _decode_nested(value: Any, what: str) -> Any:
    """Second parse pass for values that arrive as JSON-encoded strings"""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise MalformedMetadata(f"Invalid JSON in {what}: {e}") from e


def parse_locations_from_endpoint_metadata(endpoint_metadata_raw: str) -> Set[str]:
    """
    Flatten the cloud endpoints document into a set of location names

    The document maps "cloudEndpoint" to an object keyed by cloud name, each
    carrying a "locations" list. Nested values may themselves be JSON-encoded
    strings and are parsed a second time.

    Raises:
        MalformedMetadata: The document does not have the expected shape
    """
    endpoint_metadata = _decode_nested(endpoint_metadata_raw, "endpoint metadata")
    if not isinstance(endpoint_metadata, dict):
        raise MalformedMetadata("Endpoint metadata is not a JSON object")

    if "cloudEndpoint" not in endpoint_metadata:
        raise MalformedMetadata("Endpoint metadata has no cloudEndpoint")

    all_cloud_endpoints = _decode_nested(endpoint_metadata["cloudEndpoint"], "cloudEndpoint")
    if not isinstance(all_cloud_endpoints, dict):
        raise MalformedMetadata("cloudEndpoint is not a JSON object")

    locations = set()
    for cloud_name, raw_details in all_cloud_endpoints.items():
        endpoint_details = _decode_nested(raw_details, f"cloud {cloud_name}")
        if not isinstance(endpoint_details, dict):
            raise MalformedMetadata(f"Details for cloud {cloud_name} are not a JSON object")

        endpoint_locations = _decode_nested(endpoint_details.get("locations", []), f"{cloud_name} locations")
        if not isinstance(endpoint_locations, list):
            raise MalformedMetadata(f"Locations for cloud {cloud_name} are not a list")

        locations.update(str(location) for location in endpoint_locations)

    return locations


def is_valid_datacenter(datacenter: str, locations: Set[str]) -> bool:
    """
    Check one datacenter name

    With known locations the name only has to start with one of them, since a
    configured suffix may follow the region. Without them the name has to look
    like a region name.
    """
    if locations:
        return any(datacenter.startswith(location) for location in locations)
    return DATACENTER_PATTERN.fullmatch(datacenter) is not None


def is_valid_rack(rack: str) -> bool:
    # Empty when the VM has no availability zone
    return rack == "" or RACK_PATTERN.fullmatch(rack) is not None


def validate_topology(datacenters: Iterable[str], racks: Iterable[str], locations: Set[str]) -> bool:
    """
    Validate datacenter and rack names against a set of known locations

    Every name is checked so that all problems are logged, not just the first.

    Returns:
        True if every datacenter and every rack is valid
    """
    valid = True

    for datacenter in datacenters:
        if not is_valid_datacenter(datacenter, locations):
            if locations:
                logger.warning(f"Datacenter {datacenter!r} does not start with any known location")
            else:
                logger.warning(f"Datacenter {datacenter!r} does not look like a region name")
            valid = False

    for rack in racks:
        if not is_valid_rack(rack):
            logger.warning(f"Rack {rack!r} is not an availability zone")
            valid = False

    return valid


class TopologyValidator:
    """Validates topology names against the cloud's published locations"""

    def __init__(self, fetcher: MetadataFetcher, endpoints_url: str = MANAGEMENT_ENDPOINTS_QUERY_URL):
        self.fetcher = fetcher
        self.endpoints_url = endpoints_url

    def fetch_locations(self) -> Set[str]:
        """
        Fetch the current set of known locations

        Returns an empty set when the endpoints document is unavailable or
        unreadable.
        """
        try:
            endpoint_metadata = self.fetcher(self.endpoints_url)
            locations = parse_locations_from_endpoint_metadata(endpoint_metadata)
        except Exception as e:
            logger.warning(f"Cloud locations unavailable, checking names by pattern only: {e}")
            return set()

        logger.debug(f"Discovered {len(locations)} cloud locations")
        return locations

    def validate(self, datacenters: Iterable[str], racks: Iterable[str]) -> bool:
        return validate_topology(datacenters, racks, self.fetch_locations())
