"""
Repository Pattern for MongoDB Operations

Public API:
- get_repositories(): Factory returning the Repositories bundle
- *RepositoryInterface: Abstract interfaces consumed by services
- WriteResult: Result dataclass for write operations

Usage:
    from leadgen.common.repositories import get_repositories

    repos = get_repositories()
    item = repos.work_items.get(item_id)
"""

from .base import (
    AccountRepositoryInterface,
    CompanyRepositoryInterface,
    LeadRepositoryInterface,
    ReferenceDataRepositoryInterface,
    WorkItemRepositoryInterface,
    WriteResult,
)
from .config import Repositories, RepositoryConfig, get_repositories, reset_repositories

__all__ = [
    "get_repositories",
    "reset_repositories",
    "Repositories",
    "RepositoryConfig",
    "WorkItemRepositoryInterface",
    "LeadRepositoryInterface",
    "CompanyRepositoryInterface",
    "ReferenceDataRepositoryInterface",
    "AccountRepositoryInterface",
    "WriteResult",
]
