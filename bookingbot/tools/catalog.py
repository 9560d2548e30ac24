"""
Service catalog provider.

The dialogue engine only reads the catalog. Production deployments back
CatalogProvider with the tenant admin database; InMemoryCatalog serves the
console demo and tests.
"""

import logging
import threading
from typing import Optional, Protocol

from bookingbot.schemas.catalog_schema import ServiceCategory, ServiceItem

logger = logging.getLogger(__name__)


class CatalogProvider(Protocol):
    def list_categories(self, tenant_id: str) -> list[ServiceCategory]: ...

    def list_services(
        self, tenant_id: str, category_id: Optional[str] = None
    ) -> list[ServiceItem]: ...

    def get_service(self, tenant_id: str, service_id: str) -> Optional[ServiceItem]: ...


class InMemoryCatalog:
    """Tenant-partitioned catalog held in process memory."""

    def __init__(self) -> None:
        self._categories: dict[str, dict[str, ServiceCategory]] = {}
        self._services: dict[str, dict[str, ServiceItem]] = {}
        self._lock = threading.Lock()

    def add_category(self, tenant_id: str, category: ServiceCategory) -> None:
        with self._lock:
            self._categories.setdefault(tenant_id, {})[category.id] = category

    def add_service(self, tenant_id: str, service: ServiceItem) -> None:
        with self._lock:
            self._services.setdefault(tenant_id, {})[service.id] = service

    def list_categories(self, tenant_id: str) -> list[ServiceCategory]:
        """Active categories by sort order."""
        with self._lock:
            categories = list(self._categories.get(tenant_id, {}).values())
        return sorted(
            (c for c in categories if c.active), key=lambda c: (c.sort_order, c.name)
        )

    def list_services(
        self, tenant_id: str, category_id: Optional[str] = None
    ) -> list[ServiceItem]:
        """Bookable services, optionally limited to one category."""
        with self._lock:
            services = list(self._services.get(tenant_id, {}).values())
        return sorted(
            (
                s for s in services
                if s.available and (category_id is None or s.category_id == category_id)
            ),
            key=lambda s: (s.sort_order, s.name),
        )

    def get_service(self, tenant_id: str, service_id: str) -> Optional[ServiceItem]:
        with self._lock:
            return self._services.get(tenant_id, {}).get(service_id)
