# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Document store
    RemoteDocument,

    # Local mirror
    LocalEntry,
)

__all__ = [
    "RemoteDocument",
    "LocalEntry",
]

all_models = True
