"""File exporter for writing metrics to a JSON Lines file."""

from __future__ import annotations

import logging
import threading

from opentelemetry.sdk.metrics.export import (
    MetricExporter,
    MetricExportResult,
    MetricsData,
)

logger = logging.getLogger(__name__)


class FileMetricExporter(MetricExporter):
    """
    Exporter that writes metrics to a file in JSONL format.

    Each export() call writes one JSON object (the OTLP-compatible structure
    produced by ``MetricsData.to_json``) per line.
    """

    def __init__(self, file_path: str = "metrics.jsonl", reset_on_start: bool = False) -> None:
        """
        Initialize the file exporter.

        Args:
            file_path: Path to the file where metrics will be written (default: "metrics.jsonl")
            reset_on_start: If True, the file will be cleared on first export.
                           If False, metrics will be appended to the file.
        """
        super().__init__()
        self.file_path = file_path
        self.reset_on_start = reset_on_start
        self._lock = threading.Lock()
        self._first_export = True
        self._shutdown = False

    def export(
        self,
        metrics_data: MetricsData,
        timeout_millis: float = 10_000,
        **kwargs,
    ) -> MetricExportResult:
        """
        Export metrics to the file in JSONL format.

        Returns:
            MetricExportResult.SUCCESS if the write succeeded, FAILURE otherwise
        """
        if self._shutdown:
            return MetricExportResult.FAILURE

        try:
            json_str = metrics_data.to_json(indent=None)

            with self._lock:
                if self.reset_on_start and self._first_export:
                    mode = "w"
                else:
                    mode = "a"
                self._first_export = False

                with open(self.file_path, mode, encoding="utf-8") as f:
                    f.write(json_str)
                    f.write("\n")

            return MetricExportResult.SUCCESS
        except Exception as e:
            # A failed export degrades observability only; never raise into the reader.
            logger.debug("Failed to write metrics to %s: %s", self.file_path, e)
            return MetricExportResult.FAILURE

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        # Every export is written and closed synchronously.
        return True

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        self._shutdown = True
