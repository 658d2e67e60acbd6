# unitflow/warehouse/__init__.py
from __future__ import annotations

from unitflow.settings import DuckDBProfile, PostgresProfile, Profile
from unitflow.warehouse.base import Session, Warehouse


def create_warehouse(profile: Profile, *, statement_timeout_s: float | None = None) -> Warehouse:
    """
    Instantiate the warehouse for a resolved profile. A timeout set on the
    profile (or via UF_STATEMENT_TIMEOUT_S) wins over `statement_timeout_s`.
    """
    timeout = profile.statement_timeout_s or statement_timeout_s
    if isinstance(profile, DuckDBProfile):
        from unitflow.warehouse.duckdb import DuckDBWarehouse  # noqa: PLC0415

        return DuckDBWarehouse(
            profile.duckdb.path,
            threads=profile.duckdb.threads,
            pool_size=profile.duckdb.pool_size,
            statement_timeout_s=timeout,
            checkout_timeout_s=profile.checkout_timeout_s,
        )
    if isinstance(profile, PostgresProfile):
        from unitflow.warehouse.postgres import PostgresWarehouse  # noqa: PLC0415

        return PostgresWarehouse(
            profile.postgres.dsn or "",
            pool_size=profile.postgres.pool_size,
            statement_timeout_s=timeout,
            checkout_timeout_s=profile.checkout_timeout_s,
        )
    raise ValueError(f"Unsupported engine: {profile.engine}")


__all__ = ["Session", "Warehouse", "create_warehouse"]
