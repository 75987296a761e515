"""
Metadata Client for RackSentry

Performs a single GET against a cloud metadata endpoint and returns the body
as text. Retries are left to the caller, which decides how to degrade.
"""

import logging
import requests
from typing import Callable, Optional

from racksentry.common.exceptions import MalformedMetadata, TransportError, UnexpectedResponse

logger = logging.getLogger("MetadataClient")

AZURE_QUERY_URL_TEMPLATE = "http://169.254.169.254/metadata/instance/compute/{}?api-version=2018-04-02&format=text"
REGION_NAME_QUERY_URL = AZURE_QUERY_URL_TEMPLATE.format("location")
ZONE_NAME_QUERY_URL = AZURE_QUERY_URL_TEMPLATE.format("zone")
MANAGEMENT_ENDPOINTS_QUERY_URL = "https://management.azure.com/metadata/endpoints?api-version=2018-07-01"

# The instance metadata service rejects requests without this header
METADATA_HEADERS = {"Metadata": "True"}

# Anything that turns a URL into response text
MetadataFetcher = Callable[[str], str]


class MetadataClient:
    """HTTP client for the instance metadata service"""

    def __init__(self, timeout: float = 5.0, session: Optional[requests.Session] = None):
        """
        Initialize the metadata client

        Args:
            timeout: Connect and read timeout in seconds
            session: Session to issue requests on, created if not given
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str) -> str:
        """
        Fetch a metadata document

        Args:
            url: Metadata endpoint to query

        Returns:
            Response body decoded as UTF-8

        Raises:
            TransportError: The service could not be reached
            UnexpectedResponse: The service answered with a status other than 200
            MalformedMetadata: The body is not valid UTF-8
        """
        logger.debug(f"Querying metadata endpoint {url}")

        try:
            response = self.session.get(url, headers=METADATA_HEADERS, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Unable to reach metadata endpoint {url}: {e}") from e

        if response.status_code != 200:
            raise UnexpectedResponse(url, response.status_code)

        try:
            return response.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMetadata(f"Metadata response from {url} is not valid UTF-8") from e

    def close(self):
        self.session.close()

    def __enter__(self) -> 'MetadataClient':
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
