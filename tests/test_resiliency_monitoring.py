"""End-to-end resiliency monitoring tests: policy resolution feeding real views."""

from __future__ import annotations

import threading
import unittest
from unittest.mock import patch

from resiliency_metrics.errors import CircuitBreakerOpenError, TooManyRequestsError
from resiliency_metrics.metrics import MetricsBackend, PolicyType, ResiliencyMetricsRecorder
from resiliency_metrics.resiliency import (
    BreakerState,
    CircuitBreakerGate,
    Resiliency,
    ResiliencyConfig,
)

TEST_RESILIENCY_NAME = "testResiliency"
TEST_RESILIENCY_NAMESPACE = "testNamespace"
TEST_APP_ID = "fakeID"
RUNTIME_NAMESPACE = "fakeRuntimeNamespace"
RESILIENCY_COUNT_VIEW = "resiliency/count"
RESILIENCY_LOADED_VIEW = "resiliency/loaded"
CB_OPEN_VIEW = "resiliency/circuitbreaker_open/count"
CB_TOO_MANY_VIEW = "resiliency/circuitbreaker_too_many_req/count"


def create_test_resiliency_config(
    name: str = TEST_RESILIENCY_NAME,
    namespace: str = TEST_RESILIENCY_NAMESPACE,
    app_name: str = "appB",
    actor_type: str = "myActorType",
    store_name: str = "statestore1",
) -> ResiliencyConfig:
    return ResiliencyConfig.model_validate({
        "name": name,
        "namespace": namespace,
        "spec": {
            "policies": {
                "timeouts": {"testTimeout": "5s"},
                "retries": {
                    "testRetry": {"policy": "constant", "duration": "5s", "maxRetries": 10},
                },
                "circuitBreakers": {
                    "testCB": {
                        "interval": "8s",
                        "timeout": "45s",
                        "trip": "consecutiveFailures > 8",
                        "maxRequests": 1,
                    },
                },
            },
            "targets": {
                "apps": {
                    app_name: {"timeout": "testTimeout", "retry": "testRetry", "circuitBreaker": "testCB"},
                },
                "actors": {
                    actor_type: {
                        "timeout": "testTimeout",
                        "retry": "testRetry",
                        "circuitBreaker": "testCB",
                        "circuitBreakerScope": "both",
                    },
                },
                "components": {
                    store_name: {
                        "outbound": {"timeout": "testTimeout", "retry": "testRetry", "circuitBreaker": "testCB"},
                        "inbound": {"timeout": "testTimeout", "retry": "testRetry", "circuitBreaker": "testCB"},
                    },
                },
            },
        },
    })


class ResiliencyMonitoringTestCase(unittest.TestCase):

    def setUp(self):
        self.backend = MetricsBackend()
        self.metrics = ResiliencyMetricsRecorder(self.backend)
        self.metrics.init(TEST_APP_ID, RUNTIME_NAMESPACE)

    def tearDown(self):
        self.backend.shutdown()

    def rows(self, view_name):
        return self.backend.retrieve_data(view_name)

    def assert_tag_exists(self, rows, key, value):
        found = any(row.tags.get(key) == value for row in rows)
        assert found, f"did not find tag ({key}, {value}) in rows: {rows}"


class TestPolicyLoaded(ResiliencyMonitoringTestCase):

    def test_one_event_per_configuration(self):
        Resiliency.from_configurations(self.metrics, create_test_resiliency_config())

        rows = self.rows(RESILIENCY_LOADED_VIEW)
        assert len(rows) == 1
        assert rows[0].count == 1
        self.assert_tag_exists(rows, "app_id", TEST_APP_ID)
        self.assert_tag_exists(rows, "name", TEST_RESILIENCY_NAME)
        self.assert_tag_exists(rows, "namespace", TEST_RESILIENCY_NAMESPACE)

    def test_each_configuration_counted(self):
        Resiliency.from_configurations(
            self.metrics,
            create_test_resiliency_config(),
            create_test_resiliency_config(name="other", app_name="appC"),
        )
        rows = self.rows(RESILIENCY_LOADED_VIEW)
        assert sorted(r.tags["name"] for r in rows) == ["other", TEST_RESILIENCY_NAME]


class TestPolicyExecuted(ResiliencyMonitoringTestCase):

    def setUp(self):
        super().setUp()
        self.resiliency = Resiliency.from_configurations(self.metrics, create_test_resiliency_config())

    def assert_policies(self, expected):
        rows = self.rows(RESILIENCY_COUNT_VIEW)
        assert len(rows) == len(expected)
        assert sorted(r.tags["policy"] for r in rows) == sorted(expected)
        assert all(r.count == 1 for r in rows)
        self.assert_tag_exists(rows, "app_id", TEST_APP_ID)
        self.assert_tag_exists(rows, "name", TEST_RESILIENCY_NAME)
        self.assert_tag_exists(rows, "namespace", RUNTIME_NAMESPACE)

    def test_endpoint_policy(self):
        definition = self.resiliency.endpoint_policy("appB", "fakeEndpoint")
        assert definition is not None
        self.assert_policies(["timeout", "retry", "circuitbreaker"])

    def test_actor_pre_lock_policy(self):
        self.resiliency.actor_pre_lock_policy("myActorType", "fakeId")
        self.assert_policies(["retry", "circuitbreaker"])

    def test_actor_post_lock_policy(self):
        self.resiliency.actor_post_lock_policy("myActorType", "fakeId")
        self.assert_policies(["timeout"])

    def test_component_outbound_policy(self):
        self.resiliency.component_outbound_policy("statestore1")
        self.assert_policies(["timeout", "retry", "circuitbreaker"])

    def test_component_inbound_policy(self):
        self.resiliency.component_inbound_policy("statestore1")
        self.assert_policies(["timeout", "retry", "circuitbreaker"])

    def test_unknown_target_records_nothing(self):
        assert self.resiliency.endpoint_policy("unknownApp", "fakeEndpoint") is None
        assert self.rows(RESILIENCY_COUNT_VIEW) == []

    def test_concurrent_executions(self):
        workers = 40
        start = threading.Barrier(workers)

        def work():
            start.wait()
            self.resiliency.actor_post_lock_policy("myActorType", "fakeId")

        threads = [threading.Thread(target=work) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        rows = self.rows(RESILIENCY_COUNT_VIEW)
        assert len(rows) == 1
        assert rows[0].count == workers


class TestInitLifecycle(unittest.TestCase):

    def setUp(self):
        self.backend = MetricsBackend()
        self.metrics = ResiliencyMetricsRecorder(self.backend)

    def tearDown(self):
        self.backend.shutdown()

    def test_no_emission_before_init(self):
        r = Resiliency.from_configurations(self.metrics, create_test_resiliency_config())
        r.endpoint_policy("appB", "fakeEndpoint")
        gate = CircuitBreakerGate("statestore1", self.metrics)
        gate.open()
        with self.assertRaises(CircuitBreakerOpenError):
            gate.execute(lambda: None)

        self.metrics.init(TEST_APP_ID, RUNTIME_NAMESPACE)

        assert self.backend.retrieve_data(RESILIENCY_LOADED_VIEW) == []
        assert self.backend.retrieve_data(RESILIENCY_COUNT_VIEW) == []
        assert self.backend.retrieve_data(CB_OPEN_VIEW) == []

    def test_init_twice_does_not_double_count(self):
        self.metrics.init(TEST_APP_ID, RUNTIME_NAMESPACE)
        self.metrics.init(TEST_APP_ID, RUNTIME_NAMESPACE)

        r = Resiliency.from_configurations(self.metrics, create_test_resiliency_config())
        r.actor_post_lock_policy("myActorType", "fakeId")

        rows = self.backend.retrieve_data(RESILIENCY_COUNT_VIEW)
        assert len(rows) == 1
        assert rows[0].count == 1

    def test_concurrent_init(self):
        start = threading.Barrier(8)

        def work():
            start.wait()
            self.metrics.init(TEST_APP_ID, RUNTIME_NAMESPACE)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert self.metrics.enabled
        assert len(self.backend.registered_views()) == 4

    def test_recording_while_init_runs(self):
        workers = 8
        calls_per_worker = 200
        start = threading.Barrier(workers + 1)
        errors = []

        def record():
            start.wait()
            try:
                for _ in range(calls_per_worker):
                    self.metrics.policy_executed(TEST_RESILIENCY_NAME, PolicyType.RETRY)
            except Exception as e:
                errors.append(e)

        def initialize():
            start.wait()
            self.metrics.init(TEST_APP_ID, RUNTIME_NAMESPACE)

        threads = [threading.Thread(target=record) for _ in range(workers)]
        threads.append(threading.Thread(target=initialize))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        rows = self.backend.retrieve_data(RESILIENCY_COUNT_VIEW)
        assert sum(r.count for r in rows) <= workers * calls_per_worker
        for row in rows:
            assert row.tags["app_id"] == TEST_APP_ID
            assert row.tags["namespace"] == RUNTIME_NAMESPACE

    def test_recording_does_not_wait_for_init_lock(self):
        entered = threading.Event()
        release = threading.Event()
        register = self.backend.register

        def slow_register(*views):
            entered.set()
            release.wait(5)
            register(*views)

        with patch.object(self.backend, "register", side_effect=slow_register):
            initializer = threading.Thread(target=self.metrics.init, args=(TEST_APP_ID, RUNTIME_NAMESPACE))
            initializer.start()
            try:
                assert entered.wait(5)
                recorder = threading.Thread(
                    target=self.metrics.policy_loaded,
                    args=(TEST_RESILIENCY_NAME, TEST_RESILIENCY_NAMESPACE),
                )
                recorder.start()
                recorder.join(2)
                assert not recorder.is_alive()
            finally:
                release.set()
                initializer.join()

        assert self.metrics.enabled
        assert self.backend.retrieve_data(RESILIENCY_LOADED_VIEW) == []


class TestCircuitBreakerRejections(ResiliencyMonitoringTestCase):

    def setUp(self):
        super().setUp()
        self.gate = CircuitBreakerGate("statestore1", self.metrics, max_requests=1)

    def test_open_rejection(self):
        self.gate.open()
        with self.assertRaises(CircuitBreakerOpenError):
            self.gate.execute(lambda: "never")

        rows = self.rows(CB_OPEN_VIEW)
        assert len(rows) == 1
        assert rows[0].count == 1
        assert rows[0].tags == {"app_id": TEST_APP_ID, "component": "statestore1", "namespace": RUNTIME_NAMESPACE}
        assert self.rows(CB_TOO_MANY_VIEW) == []

    def test_half_open_too_many_requests(self):
        self.gate.half_open()
        entered = threading.Event()
        release = threading.Event()

        def slow():
            entered.set()
            release.wait(5)
            return "ok"

        holder = threading.Thread(target=self.gate.execute, args=(slow,))
        holder.start()
        assert entered.wait(5)
        try:
            with self.assertRaises(TooManyRequestsError):
                self.gate.execute(lambda: "rejected")
        finally:
            release.set()
            holder.join()

        rows = self.rows(CB_TOO_MANY_VIEW)
        assert len(rows) == 1
        assert rows[0].count == 1
        assert rows[0].tags["component"] == "statestore1"
        assert self.rows(CB_OPEN_VIEW) == []

    def test_closed_breaker_records_nothing(self):
        assert self.gate.state is BreakerState.CLOSED
        assert self.gate.execute(lambda x: x * 2, 21) == 42
        assert self.rows(CB_OPEN_VIEW) == []
        assert self.rows(CB_TOO_MANY_VIEW) == []

    def test_half_open_within_quota_admits(self):
        self.gate.half_open()
        assert self.gate.execute(lambda: "ok") == "ok"
        assert self.rows(CB_TOO_MANY_VIEW) == []


if __name__ == "__main__":
    unittest.main()
