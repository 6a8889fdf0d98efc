import unittest
from types import SimpleNamespace

from vpnbroker.services import region


def _server(server_id, country):
    return SimpleNamespace(id=server_id, country=country)


class RegionalTargetTests(unittest.TestCase):
    def test_germany_server_gets_prefix_and_octet_from_id(self):
        target = region.resolve_target(_server(7, "Germany"))
        self.assertEqual(target.remote_ip, "130.41.228.8")
        self.assertEqual(target.proxy_target, "http://130.41.228.8:80")

    def test_same_server_resolves_identically(self):
        server = _server(42, "Japan")
        self.assertEqual(region.resolve_target(server), region.resolve_target(server))
        self.assertEqual(region.resolve_target(server), region.resolve_target(_server(42, "Japan")))

    def test_last_octet_wraps_modulo_254(self):
        self.assertEqual(region.regional_ip(_server(253, "France")), "172.64.163.254")
        self.assertEqual(region.regional_ip(_server(254, "France")), "172.64.163.1")
        self.assertEqual(region.regional_ip(_server(0, "France")), "172.64.163.1")

    def test_unmapped_or_missing_country_uses_default_prefix(self):
        self.assertEqual(region.regional_ip(_server(3, "Atlantis")), "192.168.1.4")
        self.assertEqual(region.regional_ip(_server(3, None)), "192.168.1.4")
        self.assertEqual(region.regional_ip(SimpleNamespace(id=3)), "192.168.1.4")

    def test_location_lookup_by_prefix(self):
        self.assertEqual(region.location_for_ip("130.41.228.8"), "Germany")
        self.assertEqual(region.location_for_ip("104.16.132.200"), "United States")
        self.assertEqual(region.location_for_ip("8.8.8.8"), "Unknown")
        self.assertEqual(region.location_for_ip(None), "Unknown")


if __name__ == "__main__":
    unittest.main()
