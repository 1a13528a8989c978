"""
Delivery channels between the instrument and the ingestion API.

Contract: at most once, may drop. ``send`` never raises and never retries;
a lost delivery is simply lost. The only round trip that returns data is
pageview creation, which may also fail and then yields ``None``.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import httpx
import structlog

from app.core.errors import TransientDeliveryFailure
from app.tracker.events import Outbound

logger = structlog.get_logger(__name__)


class DeliveryChannel:
    def send(self, outbound: Outbound) -> None:
        raise NotImplementedError

    def create_pageview(self, payload: dict) -> Optional[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpDeliveryChannel(DeliveryChannel):
    """
    Posts JSON to ``{base_url}{path}`` with httpx.

    Beacon deliveries go out as ``text/plain`` like ``navigator.sendBeacon``.
    With ``background=True`` fire-and-forget posts run on a single worker
    thread so ``send`` returns immediately.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 5.0,
        background: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=1) if background else None

    def _post(self, path: str, payload: dict, beacon: bool = False) -> httpx.Response:
        headers = {"Content-Type": "text/plain;charset=UTF-8" if beacon else "application/json"}
        try:
            response = self._client.post(f"{self.base_url}{path}", content=json.dumps(payload), headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientDeliveryFailure(f"{path}: {e}") from e
        return response

    def _deliver(self, outbound: Outbound) -> None:
        try:
            self._post(outbound.path, outbound.payload, beacon=outbound.beacon)
        except TransientDeliveryFailure as e:
            logger.debug("Delivery dropped", path=outbound.path, error=str(e))

    def send(self, outbound: Outbound) -> None:
        if self._executor is not None:
            self._executor.submit(self._deliver, outbound)
        else:
            self._deliver(outbound)

    def create_pageview(self, payload: dict) -> Optional[str]:
        try:
            response = self._post("/pv", payload)
            return response.json().get("id")
        except (TransientDeliveryFailure, ValueError) as e:
            logger.debug("Pageview round trip failed", error=str(e))
            return None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        if self._owns_client:
            self._client.close()


class RecordingChannel(DeliveryChannel):
    """Keeps every delivery in memory; used for offline runs and replay."""

    def __init__(self, pageview_id: Optional[str] = None):
        self.pageview_id = pageview_id
        self.sent: List[Outbound] = []

    def send(self, outbound: Outbound) -> None:
        self.sent.append(outbound)

    def create_pageview(self, payload: dict) -> Optional[str]:
        return self.pageview_id
