"""
Wiring of the MongoDB repositories into the bundle the pipeline consumes.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .base import (
    AccountRepositoryInterface,
    CompanyRepositoryInterface,
    LeadRepositoryInterface,
    ReferenceDataRepositoryInterface,
    WorkItemRepositoryInterface,
)

logger = logging.getLogger(__name__)


@dataclass
class RepositoryConfig:
    """Connection string, database and collection names for the repositories."""
    mongodb_uri: str
    database: str = "leadgen"
    work_items_collection: str = "linkedin_posts"
    leads_collection: str = "leads"
    companies_collection: str = "companies"
    ensure_indexes: bool = True

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        """
        Read MONGODB_URI (required), MONGO_DB_NAME and MONGO_ENSURE_INDEXES.

        Raises:
            ValueError: MONGODB_URI is unset or empty
        """
        mongodb_uri = os.getenv("MONGODB_URI")
        if not mongodb_uri:
            raise ValueError("MONGODB_URI environment variable is required")

        return cls(
            mongodb_uri=mongodb_uri,
            database=os.getenv("MONGO_DB_NAME", "leadgen"),
            ensure_indexes=os.getenv("MONGO_ENSURE_INDEXES", "true").lower() == "true",
        )


@dataclass
class Repositories:
    """Every repository the pipeline needs, wired to one datastore."""
    work_items: WorkItemRepositoryInterface
    leads: LeadRepositoryInterface
    companies: CompanyRepositoryInterface
    reference: ReferenceDataRepositoryInterface
    accounts: AccountRepositoryInterface


_repositories: Optional[Repositories] = None


def get_repositories(config: Optional[RepositoryConfig] = None) -> Repositories:
    """Build the bundle on first call (from the environment unless given) and reuse it."""
    global _repositories

    if _repositories is not None:
        return _repositories

    from .mongo_repository import (
        MongoAccountRepository,
        MongoCompanyRepository,
        MongoConnection,
        MongoLeadRepository,
        MongoReferenceDataRepository,
        MongoWorkItemRepository,
    )

    if config is None:
        config = RepositoryConfig.from_env()

    connection = MongoConnection(config.mongodb_uri, config.database)
    work_items = MongoWorkItemRepository(connection, config.work_items_collection)
    leads = MongoLeadRepository(connection, config.leads_collection)
    companies = MongoCompanyRepository(connection, config.companies_collection)

    if config.ensure_indexes:
        work_items.ensure_indexes()
        leads.ensure_indexes()
        companies.ensure_indexes()

    _repositories = Repositories(
        work_items=work_items,
        leads=leads,
        companies=companies,
        reference=MongoReferenceDataRepository(connection),
        accounts=MongoAccountRepository(connection),
    )
    logger.info(f"Repositories initialized (database={config.database})")
    return _repositories


def reset_repositories() -> None:
    """Drop the cached bundle so the next call rebuilds it."""
    global _repositories
    _repositories = None
