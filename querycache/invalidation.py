"""
Namespace-version invalidation for a resource and its dependents.
"""

from typing import Dict, Iterable, Optional

from .errors import StoreUnavailableError
from .logging import get_logger
from .metrics import CacheMetrics
from .namespace import NamespaceVersionStore


class InvalidationCoordinator:
    """
    Bumps namespace versions so previously derived keys become unreachable.

    Entries are never deleted; they are orphaned by the version change and
    left to expire. Bumps are independent: there is no rollback and no
    retry. The primary resource is always attempted first.
    """

    def __init__(
        self,
        versions: NamespaceVersionStore,
        *,
        logging_enabled: bool = False,
        metrics: Optional[CacheMetrics] = None,
    ):
        self.versions = versions
        self.logging_enabled = logging_enabled
        self.metrics = metrics
        self.logger = get_logger("querycache.invalidation")

    async def invalidate(
        self,
        resource_name: str,
        dependents: Iterable[str] = (),
        *,
        log: Optional[bool] = None,
    ) -> Dict[str, int]:
        """
        Bump resource_name, then each dependent in order.

        Returns:
            Mapping of resource name to its new version

        Raises:
            StoreUnavailableError: On the first failed bump; details carry
                the names already bumped ("completed") and those left
                ("remaining") so the caller can retry the rest
        """
        names = [resource_name] + [name for name in dependents]
        should_log = self.logging_enabled if log is None else log
        bumped: Dict[str, int] = {}

        for index, name in enumerate(names):
            try:
                version = await self.versions.bump_version(name)
            except StoreUnavailableError as e:
                self.logger.error(
                    "Cache invalidation failed",
                    resource=name,
                    completed=list(bumped),
                    error=e.message,
                )
                if self.metrics:
                    self.metrics.record_store_error("invalidate")
                raise StoreUnavailableError(
                    f"Failed to invalidate {name}: {e.message}",
                    details={
                        "resource": name,
                        "completed": list(bumped),
                        "remaining": names[index:],
                    },
                ) from e

            bumped[name] = version
            if should_log:
                self.logger.info(
                    "Cache invalidated",
                    resource=name,
                    version=version,
                    dependent=index > 0,
                )
            if self.metrics:
                self.metrics.record_invalidation(name)

        return bumped
