""" UnitedDeployment reconciliation: revisions, pools and status.
"""

from .pool_control import Pool, PoolControl
from .pool_update import NextPoolState, PoolSetManager
from .reconciler import UnitedDeploymentReconciler, get_next_pool_states
from .revision import RevisionManager

__all__ = [
    "Pool",
    "PoolControl",
    "NextPoolState",
    "PoolSetManager",
    "UnitedDeploymentReconciler",
    "get_next_pool_states",
    "RevisionManager",
]
