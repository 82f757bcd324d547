"""
HTTP transport for the remote control endpoint.
"""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from hft_nodekit.toolkit.core.errors import TransportError
from hft_nodekit.toolkit.core.models import Action, Node

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUTS = {
    "control": 15.0,
    "signal": 5.0,
    "liveness": 5.0,
    "health": 5.0,
    "status": 5.0,
    "logs": 10.0,
}


class HttpTransport:
    """
    Client for the per-node control endpoint.

    Handles connection pooling and timeouts only. Whether a reply proves
    anything is decided by the strict parsers in ``responses``.
    """

    def __init__(self, scheme: str = "http", port: int = 80, timeouts: Optional[Dict[str, float]] = None):
        """
        Initialize the transport.

        Args:
            scheme: URL scheme of the endpoint
            port: Endpoint port (80 when fronted by the node's reverse proxy)
            timeouts: Per-operation timeouts in seconds
        """
        self.scheme = scheme
        self.port = port
        self.timeouts = dict(DEFAULT_TIMEOUTS)
        self.timeouts.update(timeouts or {})
        self.session = self._configure_session()

    def _configure_session(self) -> requests.Session:
        """Configure HTTP session with connection pooling."""
        session = requests.Session()

        # Retries would resend mutations; fallback is handled one level up
        retry_strategy = Retry(total=0)

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=10,
            pool_maxsize=20
        )

        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def base_url(self, node: Node) -> str:
        if self.port in (80, 443):
            return f"{self.scheme}://{node.address}"
        return f"{self.scheme}://{node.address}:{self.port}"

    def _request(self, node: Node, method: str, path: str, timeout: float, **kwargs) -> Any:
        url = f"{self.base_url(node)}{path}"
        logger.debug(f"{method} {url} (timeout {timeout}s)")
        try:
            response = self.session.request(method, url, timeout=timeout, **kwargs)
        except requests.Timeout as e:
            raise TransportError(f"{method} {path} timed out after {timeout}s", node_id=node.id, transport="http") from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}", node_id=node.id, transport="http") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"{method} {path} returned HTTP {response.status_code}",
                node_id=node.id, transport="http",
            )

        try:
            return response.json()
        except ValueError:
            return response.text

    def control(self, node: Node, action: Action, env: Optional[Dict[str, str]] = None) -> Any:
        """POST /control for a mutating action. Returns the decoded reply body."""
        payload: Dict[str, Any] = {
            "action": action.value,
            "createSignal": action.creates_signal,
        }
        if env and action.creates_signal:
            payload["env"] = env
        return self._request(node, "POST", "/control", self.timeouts["control"], json=payload)

    def signal_check(self, node: Node) -> Any:
        return self._request(node, "GET", "/signal-check", self.timeouts["signal"])

    def status(self, node: Node, timeout_key: str = "status") -> Any:
        return self._request(node, "GET", "/status", self.timeouts[timeout_key])

    def health(self, node: Node) -> Any:
        return self._request(node, "GET", "/health", self.timeouts["health"])

    def logs(self, node: Node, lines: int = 50) -> Any:
        return self._request(node, "GET", "/logs", self.timeouts["logs"], params={"lines": int(lines)})

    def close(self) -> None:
        self.session.close()
