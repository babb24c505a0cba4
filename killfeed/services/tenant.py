# services/tenant.py
"""
Tenant isolation for the ingestion pipeline.

Every cursor, player stat and kill record belongs to exactly one tenant,
identified by the (guild_id, server_id) pair. The key is passed explicitly
into every store call; there is no "current tenant" held anywhere else, and
an operation without a valid key is rejected instead of guessed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class TenantBoundaryViolation(Exception):
    """An operation tried to run without a tenant, or touched another tenant's data."""
    pass


class InvalidTenantKey(TenantBoundaryViolation, ValueError):
    """guild_id / server_id pair failed validation."""
    pass


@dataclass(frozen=True)
class TenantKey:
    """A (guild_id, server_id) pair. Immutable and hashable."""
    guild_id: int
    server_id: str

    def __post_init__(self):
        # bool is an int subclass; True must not pass as guild 1
        if isinstance(self.guild_id, bool) or not isinstance(self.guild_id, int) or self.guild_id <= 0:
            raise InvalidTenantKey(f"guild_id must be a positive integer, got {self.guild_id!r}")
        if not isinstance(self.server_id, str) or not self.server_id.strip():
            raise InvalidTenantKey(f"server_id must be a non-empty string, got {self.server_id!r}")
        object.__setattr__(self, 'server_id', self.server_id.strip())

    @classmethod
    def from_row(cls, row: dict) -> "TenantKey":
        """Build a key from a database row carrying guild_id and server_id columns."""
        return cls(int(row['guild_id']), str(row['server_id']))

    def owns(self, row: Optional[dict]) -> bool:
        """True if a database row belongs to this tenant."""
        if row is None:
            return False
        return int(row.get('guild_id', 0)) == self.guild_id and str(row.get('server_id')) == self.server_id

    def __str__(self) -> str:
        return f"{self.guild_id}/{self.server_id}"


def require_tenant(tenant: Any, operation: str) -> TenantKey:
    """
    Reject an operation that lacks a valid tenant.

    Returns the tenant unchanged so callers can write
    ``tenant = require_tenant(tenant, "find_cursor")``.
    """
    if not isinstance(tenant, TenantKey):
        logger.error(f"Tenant boundary violation: {operation} called without a tenant (got {tenant!r})")
        raise TenantBoundaryViolation(f"{operation} requires a TenantKey, got {type(tenant).__name__}")
    return tenant


def check_row_boundary(tenant: TenantKey, row: Optional[dict], entity: str) -> Optional[dict]:
    """
    Verify that a row read back from the store belongs to the requesting tenant.

    A mismatch means a query lost its tenant filter; the row is never handed out.
    """
    if row is None:
        return None
    if not tenant.owns(row):
        logger.error(
            f"Tenant boundary violation: {entity} row for "
            f"{row.get('guild_id')}/{row.get('server_id')} returned to tenant {tenant}"
        )
        raise TenantBoundaryViolation(f"{entity} row does not belong to tenant {tenant}")
    return row


def resolve_tenant(guild_id: Optional[int], server_id: Optional[str]) -> TenantKey:
    """
    Build a tenant from loosely typed input (slash command options, config rows).

    Raises InvalidTenantKey when either part is missing. Never substitutes a default.
    """
    if guild_id is None or server_id is None:
        logger.error(f"Tenant boundary violation: unresolved tenant guild={guild_id!r} server={server_id!r}")
        raise InvalidTenantKey("Both guild_id and server_id are required")
    return TenantKey(int(guild_id), str(server_id))


def for_each_tenant(store, fn: Callable[[TenantKey], Any],
                    tenants: Optional[Iterable[TenantKey]] = None) -> dict:
    """
    Run an administrative operation once per tenant.

    This is the only sanctioned way to do cross-tenant work: the tenant list
    comes from ``store.enumerate_tenants()`` and ``fn`` only ever sees one
    tenant at a time. A failure for one tenant is logged and does not stop
    the others.

    Returns:
        Mapping of tenant -> fn result (exceptions are stored as the result)
    """
    results = {}
    for tenant in (tenants if tenants is not None else store.enumerate_tenants()):
        try:
            results[tenant] = fn(tenant)
        except Exception as e:
            logger.error(f"Tenant operation failed for {tenant}: {e}", exc_info=True)
            results[tenant] = e
    return results
