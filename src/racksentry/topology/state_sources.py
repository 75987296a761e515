#!/usr/bin/env python3
"""
State sources for topology resolution

Read-only views over the two places other nodes' placement can come from:
the live membership state propagated between nodes, and the persisted record
of each node's last known placement. Backends are provided for Redis, a JSON
file and plain in-memory maps.
"""

import json
import logging
import redis
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Mapping, Optional, Union, Any

from racksentry.common.exceptions import StateSourceError
from racksentry.topology.endpoint import ApplicationState, NodeAddress, PeerPlacement

logger = logging.getLogger("StateSources")


class MembershipState(ABC):
    """Live per-node attributes propagated by the membership protocol"""

    @abstractmethod
    def get_application_state(self, endpoint: NodeAddress, key: ApplicationState) -> Optional[str]:
        """Return the value the endpoint published for key, or None if unknown"""


class PersistedTopologyStore(ABC):
    """Durable record of each node's last observed placement"""

    @abstractmethod
    def load_all(self) -> Mapping[NodeAddress, PeerPlacement]:
        """Return every recorded placement"""


class StaticMembershipState(MembershipState):
    """Membership state held in memory"""

    def __init__(self, states: Optional[Dict[NodeAddress, Dict[ApplicationState, str]]] = None):
        self.states = dict(states or {})

    def set_application_state(self, endpoint: NodeAddress, key: ApplicationState, value: str):
        self.states.setdefault(endpoint, {})[key] = value

    def get_application_state(self, endpoint: NodeAddress, key: ApplicationState) -> Optional[str]:
        return self.states.get(endpoint, {}).get(key)


class StaticTopologyStore(PersistedTopologyStore):
    """Persisted topology held in memory"""

    def __init__(self, placements: Optional[Mapping[NodeAddress, PeerPlacement]] = None):
        self.placements = dict(placements or {})

    def load_all(self) -> Mapping[NodeAddress, PeerPlacement]:
        return dict(self.placements)


def _decode_placements(records: Mapping[str, Any], source: str) -> Dict[NodeAddress, PeerPlacement]:
    """Decode {"host:port": record} pairs, skipping entries that cannot be parsed"""
    placements = {}
    for address, record in records.items():
        try:
            if isinstance(record, str):
                record = json.loads(record)
            placements[NodeAddress.from_string(address)] = PeerPlacement.from_dict(record)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping unreadable placement for {address} in {source}: {e}")
    return placements


class RedisMembershipState(MembershipState):
    """
    Membership state published in Redis

    Each node keeps a hash at {namespace}:gossip:{host:port} with one field per
    application state.
    """

    def __init__(self, redis_client: redis.Redis, namespace: str = "racksentry"):
        self.redis_client = redis_client
        self.namespace = namespace

    def _state_key(self, endpoint: NodeAddress) -> str:
        return f"{self.namespace}:gossip:{endpoint}"

    def get_application_state(self, endpoint: NodeAddress, key: ApplicationState) -> Optional[str]:
        try:
            value = self.redis_client.hget(self._state_key(endpoint), key.value)
        except redis.RedisError as e:
            raise StateSourceError(f"Unable to read membership state for {endpoint}: {e}") from e

        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value


class RedisTopologyStore(PersistedTopologyStore):
    """
    Persisted topology kept in Redis

    A single hash at {namespace}:topology:peers maps "host:port" to a JSON
    record with "data_center" and "rack".
    """

    def __init__(self, redis_client: redis.Redis, namespace: str = "racksentry"):
        self.redis_client = redis_client
        self.namespace = namespace

    @property
    def peers_key(self) -> str:
        return f"{self.namespace}:topology:peers"

    def load_all(self) -> Mapping[NodeAddress, PeerPlacement]:
        try:
            records = self.redis_client.hgetall(self.peers_key)
        except redis.RedisError as e:
            raise StateSourceError(f"Unable to load persisted topology from Redis: {e}") from e

        records = {
            (k.decode("utf-8") if isinstance(k, bytes) else k): (v.decode("utf-8") if isinstance(v, bytes) else v)
            for k, v in records.items()
        }
        placements = _decode_placements(records, self.peers_key)
        logger.info(f"Loaded {len(placements)} persisted placements from Redis")
        return placements


class FileTopologyStore(PersistedTopologyStore):
    """Persisted topology kept in a JSON file of {"host:port": record}"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load_all(self) -> Mapping[NodeAddress, PeerPlacement]:
        if not self.path.exists():
            logger.info(f"No persisted topology at {self.path}")
            return {}

        try:
            with open(self.path, 'r') as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateSourceError(f"Unable to load persisted topology from {self.path}: {e}") from e

        if not isinstance(records, dict):
            raise StateSourceError(f"Persisted topology in {self.path} must be a JSON object")

        placements = _decode_placements(records, str(self.path))
        logger.info(f"Loaded {len(placements)} persisted placements from {self.path}")
        return placements


class FallbackTopologyStore(PersistedTopologyStore):
    """
    Try each store in order

    Returns the first non-empty result. Raises only if every store failed.
    """

    def __init__(self, *stores: PersistedTopologyStore):
        self.stores = stores

    def load_all(self) -> Mapping[NodeAddress, PeerPlacement]:
        last_error = None
        loaded_any = False
        for store in self.stores:
            try:
                placements = store.load_all()
            except StateSourceError as e:
                logger.warning(f"{type(store).__name__} unavailable: {e}")
                last_error = e
                continue

            loaded_any = True
            if placements:
                return placements

        if last_error and not loaded_any:
            raise last_error
        return {}


def init_redis_client(config: Dict[str, Any]) -> Optional[redis.Redis]:
    """Connect to Redis from configuration, returning None if unreachable"""
    try:
        client = redis.Redis(
            host=config.get("redis_host", "localhost"),
            port=config.get("redis_port", 6379),
            password=config.get("redis_password"),
            db=config.get("redis_db", 0),
            decode_responses=True
        )

        # Test connection
        client.ping()
        logger.info("Connected to Redis")
        return client

    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis: {e}")
        return None
