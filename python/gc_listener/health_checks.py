"""
Health check utilities for verifying connectivity and configuration.

This module provides health checks for:
- Configuration validity
- Docker registry API connectivity (and whether pruning credentials are set)
- The garbage-collect prerequisites (binary and registry config file)
"""

import os
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional

from gc_listener.error_utils import ActionableError, create_registry_connection_error
from gc_listener.logging_utils import get_logger


@dataclass
class HealthCheckResult:
    """Result of a health check"""

    name: str
    status: bool  # True if healthy, False if unhealthy
    message: str
    details: Optional[Dict] = None


class HealthChecker:
    """Performs health checks on the listener's collaborators"""

    def __init__(self, config_manager, client, collector):
        self.config_manager = config_manager
        self.client = client
        self.collector = collector
        self.logger = get_logger(self.__class__.__name__)

    def check_configuration(self) -> HealthCheckResult:
        """Check if configuration is valid"""
        try:
            # This will raise ConfigValidationError if invalid
            self.config_manager.validate_config()

            return HealthCheckResult(
                name="configuration",
                status=True,
                message="Configuration is valid",
                details={
                    "registry_url": self.config_manager.get_registry_url(),
                    "keep_n": self.config_manager.get_keep_n(),
                    "gc_mode": self.config_manager.get_gc_mode(),
                },
            )
        except Exception as e:
            return HealthCheckResult(
                name="configuration",
                status=False,
                message=f"Configuration validation failed: {str(e)}",
                details={"error": str(e)},
            )

    def check_registry_connectivity(self) -> HealthCheckResult:
        """Check if the registry API answers on /v2/"""
        registry_url = self.client.registry_url
        try:
            self.client.ping()
            return HealthCheckResult(
                name="registry_connectivity",
                status=True,
                message=f"Successfully connected to registry {registry_url}",
                details={
                    "registry_url": registry_url,
                    "credentials": "configured" if self.client.has_credentials() else "missing (prune disabled)",
                },
            )
        except ActionableError as e:
            return HealthCheckResult(
                name="registry_connectivity",
                status=False,
                message=e.message,
                details={"registry_url": registry_url, "error": str(e), "suggestions": e.suggestions},
            )
        except Exception as e:
            actionable_error = create_registry_connection_error(registry_url, e)
            return HealthCheckResult(
                name="registry_connectivity",
                status=False,
                message=actionable_error.message,
                details={
                    "registry_url": registry_url,
                    "error": str(e),
                    "suggestions": actionable_error.suggestions,
                },
            )

    def check_garbage_collect(self) -> HealthCheckResult:
        """Check the garbage-collect command can be started locally"""
        if self.collector.mode != "local":
            return HealthCheckResult(
                name="garbage_collect",
                status=True,
                message=f"Garbage collection runs via {self.collector.mode}; nothing to check locally",
            )

        problems = []
        if shutil.which(self.collector.binary) is None:
            problems.append(f"'{self.collector.binary}' not found on PATH")
        if not os.path.isfile(self.collector.config_path):
            problems.append(f"registry config {self.collector.config_path} does not exist")

        details = {"command": " ".join(self.collector.build_command())}
        if self.collector.last_result is not None:
            success, finished_at = self.collector.last_result
            details["last_run"] = f"{'ok' if success else 'failed'} at {finished_at}"

        if problems:
            return HealthCheckResult(
                name="garbage_collect",
                status=False,
                message="; ".join(problems),
                details=details,
            )
        return HealthCheckResult(
            name="garbage_collect",
            status=True,
            message="garbage-collect is available",
            details=details,
        )

    def run_all_checks(self) -> List[HealthCheckResult]:
        """Run all health checks"""
        return [
            self.check_configuration(),
            self.check_registry_connectivity(),
            self.check_garbage_collect(),
        ]

    def print_health_report(self, results: List[HealthCheckResult]) -> bool:
        """Print a formatted health check report

        Returns:
            True if all checks passed, False otherwise
        """
        print("\n" + "=" * 60)
        print("Health Check Report")
        print("=" * 60)

        all_healthy = True

        for result in results:
            status_icon = "✓" if result.status else "✗"
            status_text = "HEALTHY" if result.status else "UNHEALTHY"

            print(f"\n{status_icon} {result.name.upper().replace('_', ' ')}: {status_text}")
            print(f"   {result.message}")

            if result.details:
                for key, value in result.details.items():
                    if key != "error":  # Don't print error in details if it's already in message
                        print(f"   {key}: {value}")

            if not result.status:
                all_healthy = False

        print("\n" + "=" * 60)

        if all_healthy:
            print("✓ All health checks passed")
        else:
            print("✗ Some health checks failed - please review the issues above")

        print("=" * 60 + "\n")

        return all_healthy
