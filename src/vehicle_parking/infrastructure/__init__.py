"""Infrastructure layer: SQLAlchemy persistence, factories and logging setup"""

from .repositories import RepositoryFactory, SQLAlchemyUnitOfWork, UnitOfWork
from .factories import DEFAULT_CONFIG, ServiceFactory, load_config_from_env
from .logging_setup import setup_logging

__all__ = [
    "RepositoryFactory", "SQLAlchemyUnitOfWork", "UnitOfWork",
    "DEFAULT_CONFIG", "ServiceFactory", "load_config_from_env",
    "setup_logging",
]
