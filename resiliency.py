"""Resiliency policy resolution that reports its activity to the metrics recorder.

This module covers only what drives resiliency metrics: loading policy
configurations, resolving which policies guard a target, and the rejection
points of a circuit breaker. Timeout enforcement, retry scheduling and
breaker trip evaluation belong to the policy engine proper.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from resiliency_metrics.errors import CircuitBreakerOpenError, TooManyRequestsError
from resiliency_metrics.metrics.recorder import ResiliencyMetrics
from resiliency_metrics.metrics.tags import PolicyType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RetrySpec(_ConfigModel):
    policy: str = "constant"
    duration: Optional[str] = None
    max_interval: Optional[str] = Field(default=None, alias="maxInterval")
    max_retries: Optional[int] = Field(default=None, alias="maxRetries")


class CircuitBreakerSpec(_ConfigModel):
    max_requests: int = Field(default=1, alias="maxRequests")
    interval: Optional[str] = None
    timeout: Optional[str] = None
    trip: Optional[str] = None


class Policies(_ConfigModel):
    timeouts: Dict[str, str] = Field(default_factory=dict)
    retries: Dict[str, RetrySpec] = Field(default_factory=dict)
    circuit_breakers: Dict[str, CircuitBreakerSpec] = Field(default_factory=dict, alias="circuitBreakers")


class PolicyNames(_ConfigModel):
    """Names of the policies applied to one target."""

    timeout: Optional[str] = None
    retry: Optional[str] = None
    circuit_breaker: Optional[str] = Field(default=None, alias="circuitBreaker")


class ActorPolicyNames(PolicyNames):
    circuit_breaker_scope: str = Field(default="id", alias="circuitBreakerScope")


class ComponentPolicyNames(_ConfigModel):
    outbound: PolicyNames = Field(default_factory=PolicyNames)
    inbound: PolicyNames = Field(default_factory=PolicyNames)


class Targets(_ConfigModel):
    apps: Dict[str, PolicyNames] = Field(default_factory=dict)
    actors: Dict[str, ActorPolicyNames] = Field(default_factory=dict)
    components: Dict[str, ComponentPolicyNames] = Field(default_factory=dict)


class ResiliencySpec(_ConfigModel):
    policies: Policies = Field(default_factory=Policies)
    targets: Targets = Field(default_factory=Targets)


class ResiliencyConfig(_ConfigModel):
    """A named resiliency policy set, as declared by the operator."""

    name: str
    namespace: str = ""
    spec: ResiliencySpec = Field(default_factory=ResiliencySpec)


@dataclass(frozen=True)
class PolicyDefinition:
    """Policies resolved for one execution against a target."""

    config_name: str
    target: str
    timeout: Optional[str] = None
    retry: Optional[RetrySpec] = None
    circuit_breaker: Optional[CircuitBreakerSpec] = None

    def policy_types(self) -> List[PolicyType]:
        kinds = []
        if self.timeout is not None:
            kinds.append(PolicyType.TIMEOUT)
        if self.retry is not None:
            kinds.append(PolicyType.RETRY)
        if self.circuit_breaker is not None:
            kinds.append(PolicyType.CIRCUIT_BREAKER)
        return kinds


class Resiliency:
    """Resolves resiliency policies for targets and reports their use."""

    def __init__(self, metrics: ResiliencyMetrics):
        self._metrics = metrics
        self._apps: Dict[str, Tuple[ResiliencyConfig, PolicyNames]] = {}
        self._actors: Dict[str, Tuple[ResiliencyConfig, ActorPolicyNames]] = {}
        self._components: Dict[str, Tuple[ResiliencyConfig, ComponentPolicyNames]] = {}

    @classmethod
    def from_configurations(cls, metrics: ResiliencyMetrics, *configs: ResiliencyConfig) -> "Resiliency":
        r = cls(metrics)
        for config in configs:
            r.add_configuration(config)
        return r

    def add_configuration(self, config: ResiliencyConfig) -> None:
        """Index the targets of ``config``; later configurations win per target."""
        targets = config.spec.targets
        for app_id, names in targets.apps.items():
            self._apps[app_id] = (config, names)
        for actor_type, names in targets.actors.items():
            self._actors[actor_type] = (config, names)
        for component, names in targets.components.items():
            self._components[component] = (config, names)
        logger.info("Loaded resiliency configuration %s/%s", config.namespace, config.name)
        self._metrics.policy_loaded(config.name, config.namespace)

    def endpoint_policy(self, app_id: str, endpoint: str) -> Optional[PolicyDefinition]:
        """Policies for a service invocation of ``endpoint`` on ``app_id``."""
        entry = self._apps.get(app_id)
        if entry is None:
            return None
        config, names = entry
        return self._apply(config, app_id, names)

    def actor_pre_lock_policy(self, actor_type: str, actor_id: str) -> Optional[PolicyDefinition]:
        """Policies applied before the actor lock is taken: retry and circuit breaker."""
        entry = self._actors.get(actor_type)
        if entry is None:
            return None
        config, names = entry
        return self._apply(config, actor_type, names, timeout=False)

    def actor_post_lock_policy(self, actor_type: str, actor_id: str) -> Optional[PolicyDefinition]:
        """Policies applied once the actor lock is held: timeout only."""
        entry = self._actors.get(actor_type)
        if entry is None:
            return None
        config, names = entry
        return self._apply(config, actor_type, names, retry=False, circuit_breaker=False)

    def component_outbound_policy(self, name: str) -> Optional[PolicyDefinition]:
        entry = self._components.get(name)
        if entry is None:
            return None
        config, names = entry
        return self._apply(config, name, names.outbound)

    def component_inbound_policy(self, name: str) -> Optional[PolicyDefinition]:
        entry = self._components.get(name)
        if entry is None:
            return None
        config, names = entry
        return self._apply(config, name, names.inbound)

    def _apply(
        self,
        config: ResiliencyConfig,
        target: str,
        names: PolicyNames,
        timeout: bool = True,
        retry: bool = True,
        circuit_breaker: bool = True,
    ) -> PolicyDefinition:
        policies = config.spec.policies
        definition = PolicyDefinition(
            config_name=config.name,
            target=target,
            timeout=policies.timeouts.get(names.timeout) if timeout and names.timeout else None,
            retry=policies.retries.get(names.retry) if retry and names.retry else None,
            circuit_breaker=(
                policies.circuit_breakers.get(names.circuit_breaker)
                if circuit_breaker and names.circuit_breaker
                else None
            ),
        )
        for kind in definition.policy_types():
            self._metrics.policy_executed(config.name, kind)
        return definition


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreakerGate:
    """
    Admission side of a circuit breaker for one component.

    State changes are driven by the owner through ``open``, ``half_open`` and
    ``close``. ``execute`` rejects calls while open, and while half-open once
    ``max_requests`` calls are in flight; each rejection is recorded once.
    """

    def __init__(self, component: str, metrics: ResiliencyMetrics, max_requests: int = 1):
        self.component = component
        self.max_requests = max_requests
        self._metrics = metrics
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._in_flight = 0

    @property
    def state(self) -> BreakerState:
        return self._state

    def open(self) -> None:
        with self._lock:
            self._state = BreakerState.OPEN

    def half_open(self) -> None:
        with self._lock:
            self._state = BreakerState.HALF_OPEN

    def close(self) -> None:
        with self._lock:
            self._state = BreakerState.CLOSED

    def execute(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` if the breaker admits the call.

        Raises:
            CircuitBreakerOpenError: The breaker is open.
            TooManyRequestsError: The breaker is half-open and its quota is used up.
        """
        with self._lock:
            if self._state is BreakerState.OPEN:
                rejection = CircuitBreakerOpenError(
                    "circuit breaker is open", details={"component": self.component}
                )
            elif self._state is BreakerState.HALF_OPEN and self._in_flight >= self.max_requests:
                rejection = TooManyRequestsError(
                    "too many requests", details={"component": self.component}
                )
            else:
                rejection = None
                self._in_flight += 1

        if isinstance(rejection, CircuitBreakerOpenError):
            self._metrics.circuit_breaker_open(self.component)
            raise rejection
        if rejection is not None:
            self._metrics.circuit_breaker_half_open_too_many_requests(self.component)
            raise rejection

        try:
            return fn(*args, **kwargs)
        finally:
            with self._lock:
                self._in_flight -= 1
