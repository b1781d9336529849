"""Handler modules for the poolfleet operator."""

# Importing a handler module registers its kopf handlers
from . import uniteddeployment_handler

__all__ = ["uniteddeployment_handler"]
