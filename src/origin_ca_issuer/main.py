import logging
import sys
from typing import Optional

import kopf
from kubernetes import config

from .settings import Settings


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    kopf_logger = logging.getLogger("kopf")
    kopf_logger.setLevel(logging.WARNING)


def setup_kubernetes():
    try:
        config.load_incluster_config()
        logging.info("Using in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logging.info("Using local Kubernetes configuration")
        except config.ConfigException:
            logging.error("Could not load Kubernetes configuration")
            sys.exit(1)


async def main(settings: Optional[Settings] = None):
    settings = settings or Settings()
    setup_logging(settings.log_level)
    setup_kubernetes()

    logger = logging.getLogger(__name__)
    logger.info("Starting Origin CA Issuer")

    # Importing the module registers the kopf handlers.
    from . import operator

    operator.configure(settings)
    logger.info(
        f"Cluster resource namespace: {settings.cluster_resource_namespace}, "
        f"API endpoint: {settings.api_endpoint}"
    )

    namespaces = settings.namespaces
    try:
        await kopf.operator(
            standalone=True,
            clusterwide=not namespaces,
            namespaces=namespaces,
        )
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error(f"Operator failed: {e}")
        raise
    finally:
        logger.info("Shutting down Origin CA Issuer")
