"""Exception hierarchy for RackSentry"""


class RackSentryError(Exception):
    """Base class for all RackSentry errors"""


class ConfigurationError(RackSentryError):
    """Invalid configuration, or the node is not running where it was configured to run"""


class MetadataError(RackSentryError):
    """A cloud metadata call did not produce a usable answer"""


class TransportError(MetadataError, OSError):
    """Connection-level failure reaching the metadata service"""


class UnexpectedResponse(MetadataError, ConfigurationError):
    """The metadata service answered with a status other than 200"""

    def __init__(self, url: str, status_code: int):
        super().__init__(
            f"Unable to execute the metadata call to {url} (HTTP {status_code}). Not an Azure node?"
        )
        self.url = url
        self.status_code = status_code


class MalformedMetadata(MetadataError):
    """The metadata body could not be decoded or had an unexpected shape"""


class StateSourceError(RackSentryError):
    """Membership state or persisted topology could not be read"""
