"""
Domain metrics for the FHIR form engine.

Tracks schema compilation, value set resolution by source and resource
assembly outcomes.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Generator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class FormEngineMetrics:
    """
    Metrics collector for the form engine.

    Tracks:
    - Schema compilations and the issues they report
    - Value set resolutions (local, cache, remote, unresolved)
    - Remote value set fetch latency
    - Resource assemblies and their outcome
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.compilations_total = Counter(
            "form_engine_compilations_total",
            "Schema compilations performed",
            labelnames=["resource_type"],
            registry=self.registry
        )

        self.compile_issues_total = Counter(
            "form_engine_compile_issues_total",
            "Issues reported while compiling schemas",
            labelnames=["error_code"],
            registry=self.registry
        )

        self.valueset_resolutions = Counter(
            "form_engine_valueset_resolutions_total",
            "Value set resolutions by source",
            labelnames=["source"],
            registry=self.registry
        )

        self.remote_fetch_duration = Histogram(
            "form_engine_valueset_fetch_seconds",
            "Time spent fetching remote value sets",
            labelnames=["status"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry
        )

        self.assemblies_total = Counter(
            "form_engine_assemblies_total",
            "Resource assemblies by outcome",
            labelnames=["resource_type", "outcome"],
            registry=self.registry
        )

    def record_compilation(self, resource_type: Optional[str], issue_codes: list[str]):
        """Record a completed compilation and its issues."""
        self.compilations_total.labels(resource_type=resource_type or "all").inc()
        for code in issue_codes:
            self.compile_issues_total.labels(error_code=code).inc()

    def record_valueset_resolution(self, source: str):
        self.valueset_resolutions.labels(source=source).inc()

    def record_assembly(self, resource_type: str, outcome: str):
        self.assemblies_total.labels(resource_type=resource_type, outcome=outcome).inc()

    @contextmanager
    def time_remote_fetch(self) -> Generator[dict, None, None]:
        """Context manager to time a remote fetch; callers set ``status``."""
        start_time = time.time()
        labels = {"status": "error"}
        try:
            yield labels
        finally:
            duration = time.time() - start_time
            self.remote_fetch_duration.labels(status=labels["status"]).observe(duration)


# Global metrics instance
metrics = FormEngineMetrics()
