import logging
from abc import ABC, abstractmethod
from typing import Optional

from faker import Faker
from sqlalchemy.orm import Session

from tessera.security.rbac.registry import PermissionRegistry

logger = logging.getLogger(__name__)


class BaseSeeder(ABC):
    """
    Base class for seeders run by `SeederRegistry`.

    Seeders write through `self.registry` so roles, permissions and policies
    are created idempotently; the registry commits after each `run()`.

    Attributes:
        priority (int): lower runs first. RBAC data sits in 0-100.
        demo (bool): skipped by `tessera seed --no-demo`.
    """

    priority: int = 100
    demo: bool = False

    def __init__(self, session: Session, fake: Optional[Faker] = None):
        self.session = session
        self.fake = fake or Faker()
        self.registry = PermissionRegistry(session)

    @abstractmethod
    def run(self):
        ...

    def log(self, message: str):
        logger.info(f"[{type(self).__name__}] {message}")
