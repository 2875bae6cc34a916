"""Exporters for delivering metrics to backends."""

from resiliency_metrics.exporter.file_exporter import FileMetricExporter

__all__ = ["FileMetricExporter"]
