from .base import BaseSeeder
from .registry import SeederRegistry

# Import seeders so their @SeederRegistry.register decorators run.
from .core import roles as _core_roles  # noqa: F401

__all__ = ["BaseSeeder", "SeederRegistry"]
