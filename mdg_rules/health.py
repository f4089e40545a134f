"""
Liveness and readiness probes for the rule service.
"""
from datetime import datetime
from typing import Dict, Any
import psutil
from .logging import get_logger
from .rules.persistence import RuleRepository

logger = get_logger()

# Free disk below 1 GB or free memory below 50 MB makes the service not ready;
# under twice that is reported as a warning.
MIN_FREE_DISK_GB = 1.0
MIN_FREE_MEMORY_MB = 50.0


def _grade(available: float, minimum: float) -> str:
    if available < minimum:
        return "error"
    if available < minimum * 2:
        return "warning"
    return "ok"


class HealthChecker:
    """
    Reports whether the service is alive and whether it can evaluate rules.
    """

    def __init__(self, repository: RuleRepository, service_name: str = "mdg-rules", version: str = "0.1.0"):
        self.repository = repository
        self.service_name = service_name
        self.version = version

    def _envelope(self, status: str) -> Dict[str, Any]:
        return {
            "status": status,
            "service": self.service_name,
            "version": self.version,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

    def liveness(self) -> Dict[str, Any]:
        """Service process is up."""
        return self._envelope("ok")

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness check.

        Checks:
        - rules: repository answers, with stored and evaluable rule counts
        - disk_space / memory: host resources via psutil

        Any check in "error" makes the service not ready; warnings do not.
        """
        checks = {
            "rules": await self._check_rules(),
            "disk_space": self._check_resource("disk_space"),
            "memory": self._check_resource("memory"),
        }
        failed = any(check["status"] == "error" for check in checks.values())

        result = self._envelope("not_ready" if failed else "ready")
        result["checks"] = checks
        return result

    async def _check_rules(self) -> Dict[str, Any]:
        rules = await self.repository.list_all()
        return {
            "status": "ok",
            "stored": len(rules),
            "eligible": sum(1 for r in rules if r.is_eligible),
        }

    def _check_resource(self, name: str) -> Dict[str, Any]:
        try:
            if name == "disk_space":
                disk = psutil.disk_usage("/")
                available = disk.free / (1024**3)
                return {
                    "status": _grade(available, MIN_FREE_DISK_GB),
                    "available_gb": round(available, 2),
                    "used_percent": disk.percent,
                }

            memory = psutil.virtual_memory()
            available = memory.available / (1024**2)
            return {
                "status": _grade(available, MIN_FREE_MEMORY_MB),
                "available_mb": round(available, 2),
                "used_percent": memory.percent,
            }

        except (psutil.Error, OSError) as e:
            logger.warning("health.resource_check_failed", check=name, error=str(e))
            return {"status": "error", "error": str(e)}
