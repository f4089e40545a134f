"""
Prometheus metrics for the rule evaluation service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os


class Metrics:
    """
    Centralized metrics for the rule evaluation service.
    """

    def __init__(self, service_name: str = "mdg-rules", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            ["service"],
            registry=self.registry,
        )
        self.http_requests_active.labels(service=service_name).set(0)

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Business Metrics - rule engine
        self.rule_evaluations_total = Counter(
            "rule_evaluations_total",
            "Total rule evaluations",
            ["rule_type", "outcome"],
            registry=self.registry,
        )

        self.rule_evaluation_duration = Histogram(
            "rule_evaluation_duration_seconds",
            "Rule evaluation duration in seconds",
            ["rule_type"],
            registry=self.registry,
        )

        self.rule_definition_errors_total = Counter(
            "rule_definition_errors_total",
            "Evaluations that reported a malformed rule definition",
            ["rule_type"],
            registry=self.registry,
        )

        self.rules_stored = Gauge(
            "rules_stored",
            "Number of rules in the repository",
            registry=self.registry,
        )

        # System Metrics
        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        # Memory
        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        # File descriptors
        self.process_open_fds = Gauge(
            "process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        # Initial values
        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())

            # Memory
            memory_info = process.memory_info()
            self.process_memory_bytes.labels(service=self.service_name).set(memory_info.rss)

            # File descriptors
            try:
                num_fds = process.num_fds()
                self.process_open_fds.labels(service=self.service_name).set(num_fds)
            except AttributeError:
                # num_fds() not available on all platforms
                pass

        except psutil.Error:
            # Process info unavailable; keep the last values
            pass

    def record_evaluation(self, rule_type: str, outcome: str, duration_seconds: float, definition_error: bool = False):
        """Record one rule evaluation."""
        self.rule_evaluations_total.labels(rule_type=rule_type, outcome=outcome).inc()
        self.rule_evaluation_duration.labels(rule_type=rule_type).observe(duration_seconds)
        if definition_error:
            self.rule_definition_errors_total.labels(rule_type=rule_type).inc()

    def set_rules_stored(self, count: int):
        """Set the number of stored rules."""
        self.rules_stored.set(count)
