"""CRD model registry for the poolfleet operator."""

from .registry import CRDRegistry
from .base import CRDSpec, CRDStatus, CRDMetadata, CRDCondition

__all__ = ["CRDRegistry", "CRDSpec", "CRDStatus", "CRDMetadata", "CRDCondition"]
