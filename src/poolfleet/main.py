import kopf
import logging
import kubernetes

from poolfleet.config import (
    get_log_level,
    get_server_timeout,
    get_worker_limit,
    is_posting_enabled,
)

# Importing the handlers registers them with kopf
from poolfleet import handlers  # noqa: F401

logging.basicConfig(
    level=getattr(logging, get_log_level(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@kopf.on.startup()
def startup_fn(settings: kopf.OperatorSettings, **kwargs):
    """Load the cluster config and configure the operator."""
    logger.info("Poolfleet Operator is starting up...")

    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        try:
            kubernetes.config.load_kube_config()
            logger.info("Loaded local Kubernetes config")
        except Exception as e:
            logger.warning(f"Could not load Kubernetes config: {e}")

    settings.batching.worker_limit = get_worker_limit()
    settings.posting.enabled = is_posting_enabled()
    settings.watching.server_timeout = get_server_timeout()

    logger.info(f"Worker limit: {settings.batching.worker_limit}")
    logger.info(f"Posting enabled: {settings.posting.enabled}")
    logger.info("Poolfleet Operator startup complete")


@kopf.on.cleanup()
def cleanup_fn(**kwargs):
    logger.info("Poolfleet Operator is shutting down...")


def main():
    try:
        kopf.run()
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise


if __name__ == "__main__":
    main()
