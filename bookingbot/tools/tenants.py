"""Tenant settings lookup."""

import logging
import threading
from typing import Protocol

from bookingbot.errors import ConfigurationInvalid
from bookingbot.schemas.tenant_schema import TenantSettings

logger = logging.getLogger(__name__)


class TenantProvider(Protocol):
    def get_settings(self, tenant_id: str) -> TenantSettings: ...


class InMemoryTenantDirectory:
    def __init__(self, *tenants: TenantSettings) -> None:
        self._tenants: dict[str, TenantSettings] = {t.tenant_id: t for t in tenants}
        self._lock = threading.Lock()

    def put(self, tenant: TenantSettings) -> None:
        with self._lock:
            self._tenants[tenant.tenant_id] = tenant

    def get_settings(self, tenant_id: str) -> TenantSettings:
        """Settings for the tenant.

        Raises:
            ConfigurationInvalid: If the tenant is unknown.
        """
        with self._lock:
            tenant = self._tenants.get(tenant_id)
        if tenant is None:
            raise ConfigurationInvalid(f"Unknown tenant {tenant_id!r}")
        return tenant
