"""Tests for the runtime identity model."""

from __future__ import annotations

import unittest

from resiliency_metrics.identity import RuntimeIdentity


class TestRuntimeIdentity(unittest.TestCase):
    def test_runtime_identity_model(self):
        identity = RuntimeIdentity(app_id="checkout", namespace="prod")
        self.assertEqual(identity.app_id, "checkout")
        self.assertEqual(identity.namespace, "prod")

    def test_namespace_defaults_to_empty(self):
        self.assertEqual(RuntimeIdentity(app_id="checkout").namespace, "")

    def test_identity_is_frozen(self):
        identity = RuntimeIdentity(app_id="checkout", namespace="prod")
        with self.assertRaises(Exception):
            identity.app_id = "other"

    def test_to_resource_attributes(self):
        attrs = RuntimeIdentity(app_id="checkout", namespace="prod").to_resource_attributes()
        self.assertEqual(attrs.get("service.name"), "checkout")
        self.assertEqual(attrs.get("service.namespace"), "prod")

    def test_to_resource_attributes_skips_empty_namespace(self):
        attrs = RuntimeIdentity(app_id="checkout").to_resource_attributes()
        self.assertNotIn("service.namespace", attrs)
