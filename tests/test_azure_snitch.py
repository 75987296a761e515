import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from racksentry.common.configuration_manager import SnitchProperties
from racksentry.common.exceptions import UnexpectedResponse
from racksentry.common.metadata_client import (
    MANAGEMENT_ENDPOINTS_QUERY_URL,
    REGION_NAME_QUERY_URL,
    ZONE_NAME_QUERY_URL,
)
from racksentry.topology.azure_snitch import AzureSnitch, main
from racksentry.topology.endpoint import DEFAULT_DC, DEFAULT_RACK, NodeAddress, PeerPlacement
from racksentry.topology.state_sources import (
    FallbackTopologyStore,
    RedisMembershipState,
    StaticTopologyStore,
)

ENDPOINT_METADATA = (Path(__file__).parent / "data" / "endpoint_metadata.json").read_text()

LOCAL = NodeAddress("127.0.0.1", 7000)


def azure_fetcher(region="foo-not-tested", zone="foo-not-tested", endpoints=ENDPOINT_METADATA):
    def fetch(url):
        if "metadata/instance/compute/location" in url:
            return region
        if "metadata/instance/compute/zone" in url:
            return zone
        if "metadata/endpoints" in url:
            if isinstance(endpoints, Exception):
                raise endpoints
            return endpoints
        return ""
    return fetch


class TestAzureSnitch(unittest.TestCase):
    def test_full_naming_scheme(self):
        snitch = AzureSnitch(fetcher=azure_fetcher("eastus", "1"))
        self.assertEqual(snitch.get_datacenter(LOCAL), "eastus")
        self.assertEqual(snitch.get_rack(LOCAL), "1")

        snitch = AzureSnitch(fetcher=azure_fetcher("westus2", "3"))
        self.assertEqual(snitch.get_datacenter(LOCAL), "westus2")
        self.assertEqual(snitch.get_rack(LOCAL), "3")

    def test_dc_suffix_and_broadcast_address(self):
        properties = SnitchProperties({"dc_suffix": "_CUSTOM_SUFFIX", "broadcast_address": "10.1.1.1:9042"})
        snitch = AzureSnitch(properties, fetcher=azure_fetcher("eastus2", "2"))

        self.assertEqual(snitch.get_label(NodeAddress("10.1.1.1", 9042)), ("eastus2_CUSTOM_SUFFIX", "2"))
        self.assertEqual(snitch.get_label(LOCAL), (DEFAULT_DC, DEFAULT_RACK))

    def test_persisted_peer(self):
        peer = NodeAddress("10.0.0.9")
        store = StaticTopologyStore({peer: PeerPlacement("westeurope", "2")})
        snitch = AzureSnitch(fetcher=azure_fetcher("eastus", "1"), store=store)
        self.assertEqual(snitch.get_label(peer), ("westeurope", "2"))

    def test_validate_racks_invalid_name(self):
        snitch = AzureSnitch(fetcher=azure_fetcher())
        self.assertFalse(snitch.validate(set(), {"1a"}))

    def test_validate_racks_valid_names(self):
        snitch = AzureSnitch(fetcher=azure_fetcher())
        self.assertTrue(snitch.validate(set(), {"2", "3", ""}))

    def test_validate_happy_path(self):
        snitch = AzureSnitch(fetcher=azure_fetcher())
        self.assertTrue(snitch.validate({"eastus2"}, {"1"}))

    def test_validate_happy_path_with_dc_suffix(self):
        snitch = AzureSnitch(fetcher=azure_fetcher())
        self.assertTrue(snitch.validate({"eastus2_CUSTOM_SUFFIX"}, {"1"}))

    def test_validate_without_endpoint_metadata(self):
        error = UnexpectedResponse(MANAGEMENT_ENDPOINTS_QUERY_URL, 503)
        snitch = AzureSnitch(fetcher=azure_fetcher(endpoints=error))
        self.assertTrue(snitch.validate({"centralus2"}, set()))
        self.assertFalse(snitch.validate({"US-East"}, set()))

    def test_validate_locations(self):
        snitch = AzureSnitch(fetcher=azure_fetcher())
        self.assertTrue(snitch.validate_locations({"eastus2x"}, {"1"}, {"eastus"}))
        self.assertFalse(snitch.validate_locations({"westus"}, {"1"}, {"eastus"}))

    def test_construction_fails_outside_azure(self):
        def fetch(url):
            raise UnexpectedResponse(url, 404)

        with self.assertRaises(UnexpectedResponse):
            AzureSnitch(fetcher=fetch)


class TestFromProperties(unittest.TestCase):
    @mock.patch("racksentry.topology.azure_snitch.MetadataClient")
    @mock.patch("racksentry.topology.azure_snitch.init_redis_client")
    def test_redis_collaborators(self, init_redis, client_cls):
        client_cls.return_value.fetch.side_effect = azure_fetcher("eastus", "1")
        redis_client = init_redis.return_value
        redis_client.hget.return_value = None
        redis_client.hgetall.return_value = {"10.0.0.2:7000": json.dumps({"data_center": "eastus2", "rack": "3"})}

        snitch = AzureSnitch.from_properties(SnitchProperties({"topology_file": None, "metadata_timeout": 1.5}))

        client_cls.assert_called_once_with(timeout=1.5)
        self.assertIsInstance(snitch.resolver.membership, RedisMembershipState)
        self.assertIsInstance(snitch.resolver.store, FallbackTopologyStore)
        self.assertEqual(snitch.get_label(NodeAddress("10.0.0.2")), ("eastus2", "3"))
        redis_client.hget.assert_any_call("racksentry:gossip:10.0.0.2:7000", "datacenter")

    @mock.patch("racksentry.topology.azure_snitch.MetadataClient")
    def test_without_collaborators(self, client_cls):
        client_cls.return_value.fetch.side_effect = azure_fetcher("eastus", "1")
        snitch = AzureSnitch.from_properties(SnitchProperties({"redis_enabled": False, "topology_file": None}))

        self.assertIsNone(snitch.resolver.membership)
        self.assertIsNone(snitch.resolver.store)
        self.assertEqual(snitch.get_label(NodeAddress("10.0.0.2")), (DEFAULT_DC, DEFAULT_RACK))

    @mock.patch("racksentry.topology.azure_snitch.MetadataClient")
    def test_client_closed_when_construction_fails(self, client_cls):
        client_cls.return_value.fetch.side_effect = UnexpectedResponse(REGION_NAME_QUERY_URL, 404)

        with self.assertRaises(UnexpectedResponse):
            AzureSnitch.from_properties(SnitchProperties({"redis_enabled": False}))
        client_cls.return_value.close.assert_called_once_with()


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.peers = self.dir / "peers.json"
        self.peers.write_text(json.dumps({"10.0.0.2:7000": {"data_center": "westus2", "rack": "2"}}))
        self.config = self.dir / "snitch.yaml"
        self.config.write_text(f"redis_enabled: false\ntopology_file: {self.peers}\nlog_level: WARNING\n")

        patcher = mock.patch("racksentry.topology.azure_snitch.MetadataClient")
        self.client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.client_cls.return_value.fetch.side_effect = azure_fetcher("eastus", "1")

        # Leave the test runner's logging setup alone
        patcher = mock.patch("racksentry.topology.azure_snitch.configure_logging")
        self.configure_logging = patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self.tmp.cleanup()

    def run_main(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["--config", str(self.config)] + list(argv))
        return code, out.getvalue()

    def test_resolve_endpoints(self):
        code, output = self.run_main("--endpoint", "10.0.0.2:7000", "--endpoint", "10.0.0.3")

        self.assertEqual(code, 0)
        self.assertIn("datacenter=eastus rack=1", output)
        self.assertIn("10.0.0.2:7000: datacenter=westus2 rack=2", output)
        self.assertIn("10.0.0.3:7000: datacenter=UNKNOWN-DC rack=UNKNOWN-RACK", output)
        self.configure_logging.assert_called_once_with("WARNING", None)

    def test_validate_ok(self):
        code, output = self.run_main("--validate", "--datacenters", "eastus2,westus", "--racks", "1,2,")
        self.assertEqual(code, 0)
        self.assertIn("valid", output)

    def test_validate_failure(self):
        code, _ = self.run_main("--validate", "--datacenters", "eastus2", "--racks", "1a")
        self.assertEqual(code, 1)

    def test_not_on_azure(self):
        self.client_cls.return_value.fetch.side_effect = UnexpectedResponse(ZONE_NAME_QUERY_URL, 404)
        code, _ = self.run_main()
        self.assertEqual(code, 2)

    def test_bad_endpoint(self):
        code, _ = self.run_main("--endpoint", "10.0.0.2:port")
        self.assertEqual(code, 2)

    def test_create_config(self):
        target = self.dir / "generated.json"
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["--create-config", str(target)])

        self.assertEqual(code, 0)
        self.assertTrue(target.exists())


if __name__ == "__main__":
    unittest.main()
