import logging
from typing import List, Optional, Type

from faker import Faker
from sqlalchemy.orm import Session

from .base import BaseSeeder

logger = logging.getLogger(__name__)


class SeederRegistry:
    """Registry to manage and execute registered seeders."""

    _seeders: List[Type[BaseSeeder]] = []

    @classmethod
    def register(cls, seeder_cls: Type[BaseSeeder]):
        """Decorator to register a seeder class."""
        if seeder_cls not in cls._seeders:
            cls._seeders.append(seeder_cls)
        return seeder_cls

    @classmethod
    def seeders(cls, *, include_demo: bool = True) -> List[Type[BaseSeeder]]:
        ordered = sorted(cls._seeders, key=lambda x: x.priority)
        if include_demo:
            return ordered
        return [s for s in ordered if not s.demo]

    @classmethod
    def run_all(cls, session: Session, *, include_demo: bool = True, seed: Optional[int] = None):
        """Run registered seeders in priority order, committing after each."""
        fake = Faker()
        if seed is not None:
            fake.seed_instance(seed)

        selected = cls.seeders(include_demo=include_demo)
        total = len(selected)
        logger.info(f"Starting seeding process. {total} seeders selected.")

        for index, seeder_cls in enumerate(selected, 1):
            seeder = seeder_cls(session, fake)
            try:
                seeder.log(f"Running ({index}/{total})...")
                seeder.run()
                session.commit()
                seeder.log("Completed.")
            except Exception as e:
                session.rollback()
                logger.error(f"Seeder {seeder_cls.__name__} failed: {e}")
                raise
