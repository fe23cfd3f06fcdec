"""State persistence layer for deployment records and leases."""

from deploy_engine.state.database import IN_MEMORY_URL, get_engine, get_session, init_engine, state_store_exists
from deploy_engine.state.repository import DeploymentRecordRepository, LeaseRepository
from deploy_engine.state.sqlite_adapter import create_local_tables

__all__ = [
    "IN_MEMORY_URL",
    "DeploymentRecordRepository",
    "LeaseRepository",
    "create_local_tables",
    "get_engine",
    "get_session",
    "init_engine",
    "state_store_exists",
]
