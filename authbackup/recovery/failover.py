"""Regional failover hook."""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import requests

from authbackup.backup.models import utcnow
from authbackup.utils.errors import TransientDeliveryError

logger = logging.getLogger(__name__)


class FailoverHandler:
    """Hands a failover request to the system that owns DNS and traffic cutover.

    With a webhook configured the request is POSTed there; otherwise it is
    only recorded and the cutover must be done out of band.
    """

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 30):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def execute(self, target_region: str, failover_type: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Request failover to a region.

        Returns:
            Dict[str, Any]: target_region, failover_type, completed, delegated, timestamp

        Raises:
            TransientDeliveryError: If the webhook cannot be reached or rejects the request
        """
        record = {
            "target_region": target_region,
            "failover_type": failover_type,
            "completed": True,
            "delegated": bool(self.webhook_url),
            "timestamp": utcnow().isoformat(),
        }

        if not self.webhook_url:
            logger.warning("No failover webhook configured; cut traffic over to %s manually", target_region)
            return record

        payload = dict(record, metadata=metadata or {})
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransientDeliveryError(f"Failover request for {target_region} failed", details=str(e))

        logger.info("Failover to %s requested (%s)", target_region, failover_type)
        return record

    def rehearse(self, target_region: str, known_regions: Iterable[str]) -> Tuple[bool, str]:
        """Check a failover step without performing it."""
        known = list(known_regions)
        if known and target_region not in known:
            return False, f"region {target_region} is not a configured replication target"
        return True, f"failover to {target_region} would be requested"
