from abc import ABC, abstractmethod
import logging

from grantsync.acl.repository import AclRepository

logger = logging.getLogger(__name__)


class BaseSeeder(ABC):
    """
    Abstract base class for all data seeders.

    Attributes:
        priority (int): Execution order priority (lower runs first).
                        Scopes and other shared records should use 0-100.
                        Roles should use 100-500.
    """

    priority: int = 100

    def __init__(self, repository: AclRepository):
        self.repository = repository
        self.session = repository.session

    @abstractmethod
    def run(self):
        """Execute the seeding logic. Must be safe to run more than once."""
        pass

    def log(self, message: str):
        """Helper to log seeding progress."""
        logger.info(f"[{self.__class__.__name__}] {message}")
