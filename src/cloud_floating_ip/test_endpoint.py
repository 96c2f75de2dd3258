"""
Unit Tests for Network Endpoint Resolution

Test Coverage:
    - Single interface without disambiguator
    - Ambiguous multi-interface instances
    - Disambiguation by private IP, interface id and subnet
    - Non-attached interfaces are ignored
    - Disambiguator construction from options
"""

import unittest

from cloud_floating_ip.endpoint import (
    Disambiguator,
    EndpointCandidate,
    SelectorKind,
    resolve_endpoint,
)
from cloud_floating_ip.exceptions import AmbiguousEndpoint, ConfigurationError, EndpointNotFound


def two_enis():
    return [
        EndpointCandidate("eni-1", subnet_ids=("subnet-a",), private_ips=("10.0.0.5",), network="vpc-1"),
        EndpointCandidate("eni-2", subnet_ids=("subnet-b",), private_ips=("10.0.0.9",), network="vpc-1"),
    ]


class TestResolveEndpoint(unittest.TestCase):

    def test_single_candidate(self):
        endpoint = resolve_endpoint("i-1", two_enis()[:1])
        self.assertEqual(endpoint.endpoint_id, "eni-1")
        self.assertEqual(endpoint.instance, "i-1")
        self.assertEqual(endpoint.network, "vpc-1")

    def test_no_candidate(self):
        with self.assertRaises(EndpointNotFound):
            resolve_endpoint("i-1", [])

    def test_ambiguous_without_disambiguator(self):
        with self.assertRaises(AmbiguousEndpoint) as context:
            resolve_endpoint("i-1", two_enis())
        self.assertEqual(context.exception.candidates, ["eni-1", "eni-2"])
        self.assertIn("--target-ip", str(context.exception))

    def test_select_by_target_ip(self):
        endpoint = resolve_endpoint("i-1", two_enis(), Disambiguator(SelectorKind.PRIVATE_IP, "10.0.0.9"))
        self.assertEqual(endpoint.endpoint_id, "eni-2")

    def test_target_ip_without_match(self):
        with self.assertRaises(EndpointNotFound):
            resolve_endpoint("i-1", two_enis(), Disambiguator(SelectorKind.PRIVATE_IP, "10.0.0.1"))

    def test_select_by_interface(self):
        endpoint = resolve_endpoint("i-1", two_enis(), Disambiguator(SelectorKind.INTERFACE, "eni-1"))
        self.assertEqual(endpoint.endpoint_id, "eni-1")

    def test_select_by_subnet(self):
        endpoint = resolve_endpoint("i-1", two_enis(), Disambiguator(SelectorKind.SUBNET, "subnet-b"))
        self.assertEqual(endpoint.endpoint_id, "eni-2")

    def test_disambiguator_on_single_candidate_must_match(self):
        with self.assertRaises(EndpointNotFound):
            resolve_endpoint("i-1", two_enis()[:1], Disambiguator(SelectorKind.SUBNET, "subnet-b"))

    def test_detached_interfaces_ignored(self):
        candidates = two_enis()
        candidates[1] = EndpointCandidate("eni-2", private_ips=("10.0.0.9",), state="detaching")
        endpoint = resolve_endpoint("i-1", candidates)
        self.assertEqual(endpoint.endpoint_id, "eni-1")

    def test_only_detached_interfaces(self):
        with self.assertRaises(EndpointNotFound):
            resolve_endpoint("i-1", [EndpointCandidate("eni-1", state="available")])


class TestDisambiguatorFromOptions(unittest.TestCase):

    def test_none_when_no_option(self):
        self.assertIsNone(Disambiguator.from_options())

    def test_each_option(self):
        cases = [
            ({'interface': 'eni-1'}, SelectorKind.INTERFACE),
            ({'subnet': 'subnet-a'}, SelectorKind.SUBNET),
            ({'target_ip': '10.0.0.5'}, SelectorKind.PRIVATE_IP),
        ]
        for options, kind in cases:
            with self.subTest(options=options):
                disambiguator = Disambiguator.from_options(**options)
                self.assertEqual(disambiguator.kind, kind)
                self.assertEqual(disambiguator.value, list(options.values())[0])

    def test_options_are_mutually_exclusive(self):
        with self.assertRaises(ConfigurationError):
            Disambiguator.from_options(interface='eni-1', target_ip='10.0.0.5')


if __name__ == '__main__':
    unittest.main()
