from .base import BaseSeeder
from .registry import SeederRegistry

# Importing the sub-modules registers their seeders; priority sets the order.

# Core (Priority 0-100)
from .core import rbac

# Demo (skipped by --no-demo)
from .demo import posts
