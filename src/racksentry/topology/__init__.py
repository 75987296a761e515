from racksentry.topology.endpoint import (
    DEFAULT_DC,
    DEFAULT_RACK,
    ApplicationState,
    NodeAddress,
    PeerPlacement,
    TopologyLabel,
)
from racksentry.topology.resolver import TopologyResolver
from racksentry.topology.validator import TopologyValidator, validate_topology
from racksentry.topology.azure_snitch import AzureSnitch
