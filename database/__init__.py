"""Database package."""

# Importa modelos para garantir registro no metadata global
from . import models  # noqa: F401
