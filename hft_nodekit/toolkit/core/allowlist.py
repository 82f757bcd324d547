"""
Allow-list propagation: tells the downstream collaborator (exchange IP
whitelist manager) the address of the new primary.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests

from hft_nodekit.toolkit.core.errors import NodeKitError
from hft_nodekit.toolkit.core.models import Node

logger = logging.getLogger(__name__)


class AllowlistError(NodeKitError):
    """The allow-list collaborator did not accept the new address."""


@dataclass(frozen=True)
class PropagationResult:
    skipped: bool
    attempts: int = 0
    detail: str = ""


class AllowlistSync:
    """POSTs the new primary address to a webhook with bounded retries."""

    def __init__(self, url: Optional[str] = None, token: Optional[str] = None,
                 retries: int = 3, backoff: float = 1.0, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.url = url or None
        self.token = token or None
        self.retries = max(1, int(retries))
        self.backoff = backoff
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return self.url is not None

    def propagate(self, node: Node) -> PropagationResult:
        """
        Push the node's address.

        Returns:
            PropagationResult; ``skipped`` when no webhook is configured

        Raises:
            AllowlistError: Every attempt failed
        """
        if not self.enabled:
            logger.info("No allow-list webhook configured; skipping propagation")
            return PropagationResult(skipped=True, detail="no webhook configured")

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = {"newIP": node.address, "nodeId": node.id, "provider": node.provider}

        last_error = ""
        for attempt in range(1, self.retries + 1):
            try:
                response = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
                if 200 <= response.status_code < 300:
                    logger.info(f"Allow-list updated to {node.address} (attempt {attempt})")
                    return PropagationResult(skipped=False, attempts=attempt)
                last_error = f"HTTP {response.status_code}"
            except requests.RequestException as e:
                last_error = str(e)

            logger.warning(f"Allow-list update attempt {attempt}/{self.retries} failed: {last_error}")
            if attempt < self.retries and self.backoff > 0:
                time.sleep(self.backoff * attempt)

        raise AllowlistError(
            f"Allow-list update to {node.address} failed after {self.retries} attempts: {last_error}",
            node_id=node.id, stage="allowlist-sync",
        )
