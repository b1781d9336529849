""" Operator configuration read from the environment.
"""

import os


def get_log_level():
    """ Get the root log level name.
    """
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_worker_limit():
    return int(os.getenv("WORKER_LIMIT", "5"))


def is_posting_enabled():
    """ Check if kopf should post log records as Kubernetes events.
    """
    return os.getenv("POSTING_ENABLED", "false").lower() == "true"


def get_server_timeout():
    return int(os.getenv("SERVER_TIMEOUT", "60"))


def get_resync_interval():
    """ Get the interval (seconds) of the periodic reconcile timer.
    """
    return float(os.getenv("RESYNC_INTERVAL", "30"))


def get_slow_start_initial_batch_size():
    """ Get the first batch size used when creating or updating pools.
    """
    return max(1, int(os.getenv("SLOW_START_INITIAL_BATCH_SIZE", "1")))


def get_pool_update_retries():
    """ Get how many read-modify-write attempts UpdatePool makes.
    """
    return max(1, int(os.getenv("POOL_UPDATE_RETRIES", "5")))


def get_revision_collision_retry_limit():
    """ Get the cap on revision name collision retries.
    """
    return int(os.getenv("REVISION_COLLISION_RETRY_LIMIT", "100"))


def get_default_revision_history_limit():
    return int(os.getenv("REVISION_HISTORY_LIMIT", "10"))
