"""Initialization helpers for resiliency metrics."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from resiliency_metrics.config import ResiliencyMetricsConfig, load_config
from resiliency_metrics.errors import ConfigError
from resiliency_metrics.identity import RuntimeIdentity
from resiliency_metrics.metrics.backend import MetricsBackend
from resiliency_metrics.metrics.recorder import (
    NoopResiliencyMetrics,
    ResiliencyMetrics,
    ResiliencyMetricsRecorder,
)

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "resiliency_metrics"


def _configure_logging(config: ResiliencyMetricsConfig) -> None:
    if config.logging.debug:
        logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)


def init(
    app_id: Optional[str] = None,
    namespace: Optional[str] = None,
    config_file: Optional[str] = None,
    enable_metrics: Optional[bool] = None,
    exporter: Optional[str] = None,
    metrics_endpoint: Optional[str] = None,
    debug: Optional[bool] = None,
    backend: Optional[MetricsBackend] = None,
) -> ResiliencyMetrics:
    """
    Build and initialize the resiliency metrics recorder for this process.

    Explicit parameters override environment variables, which override the
    config file. The returned recorder should be handed to every component
    that records resiliency events.

    Args:
        app_id: Application identifier (required here or in configuration)
        namespace: Namespace the application runs in
        config_file: Optional explicit path to a TOML config file
        enable_metrics: Turn metrics on or off
        exporter: One of "otlp", "console", "file", "none"
        metrics_endpoint: OTLP/HTTP metrics endpoint
        debug: Enable debug logging for the package
        backend: Pre-built backend; skips exporter setup from configuration

    Raises:
        ConfigError: If configuration is invalid or no app_id is available
        ViewRegistrationError: If the backend rejects a view definition
    """
    overrides: Dict[str, Dict[str, Any]] = {"metrics": {}, "runtime": {}, "logging": {}}
    if app_id is not None:
        overrides["runtime"]["app_id"] = app_id
    if namespace is not None:
        overrides["runtime"]["namespace"] = namespace
    if enable_metrics is not None:
        overrides["metrics"]["enable_metrics"] = enable_metrics
    if exporter is not None:
        overrides["metrics"]["exporter"] = exporter
    if metrics_endpoint is not None:
        overrides["metrics"]["metrics_endpoint"] = metrics_endpoint
    if debug is not None:
        overrides["logging"]["debug"] = debug

    config = load_config(
        config_file=config_file,
        overrides={k: v for k, v in overrides.items() if v},
    )
    _configure_logging(config)

    if not config.metrics.enable_metrics:
        logger.info("Resiliency metrics disabled by configuration")
        return NoopResiliencyMetrics()

    if not config.runtime.app_id:
        raise ConfigError(
            "An app_id is required to initialize resiliency metrics.",
            details={"env": "RESILIENCY_METRICS_APP_ID"},
        )

    identity = RuntimeIdentity(app_id=config.runtime.app_id, namespace=config.runtime.namespace)
    if backend is None:
        backend = MetricsBackend.from_config(config.metrics, identity=identity)

    recorder = ResiliencyMetricsRecorder(backend)
    recorder.init(identity.app_id, identity.namespace)
    return recorder


def shutdown(metrics: ResiliencyMetrics) -> None:
    """Flush pending exports and release the backend of ``metrics``."""
    backend = getattr(metrics, "backend", None)
    if backend is None:
        return
    try:
        backend.force_flush()
    finally:
        backend.shutdown()
