"""
Imperative shell around the pure handlers.

One ``Instrument`` per page load. The host page owns the clock and the
timers and feeds events through ``dispatch``, which never raises.
"""

from typing import Iterable, MutableMapping, Optional

import structlog

from app.core.errors import ErrorHandler
from app.tracker.context import InstrumentContext, TrackerConfig, resolve_session_token
from app.tracker.events import Event, Outbound, PageviewLoaded
from app.tracker.handlers import attach_pageview, handle
from app.tracker.transport import DeliveryChannel

logger = structlog.get_logger(__name__)


class Instrument:
    def __init__(
        self,
        site_key: str,
        channel: DeliveryChannel,
        storage: MutableMapping[str, str],
        config: Optional[TrackerConfig] = None,
    ):
        self.channel = channel
        self.ctx = InstrumentContext(
            site_key=site_key,
            session_id=resolve_session_token(storage),
            config=config or TrackerConfig(),
        )

    @property
    def pageview_id(self) -> Optional[str]:
        return self.ctx.pageview_id

    @property
    def session_id(self) -> str:
        return self.ctx.session_id

    def load(self, event: PageviewLoaded) -> Optional[str]:
        """Report the pageview; returns the pageview id when the round trip succeeded."""
        self.dispatch(event)
        return self.ctx.pageview_id

    def dispatch(self, event: Event) -> None:
        with ErrorHandler("tracker_dispatch", context={"event_type": type(event).__name__}):
            ctx, outbound = handle(self.ctx, event)
            self.ctx = ctx
            self._deliver(outbound)

    def _deliver(self, outbound: Iterable[Outbound]) -> None:
        for item in outbound:
            if not item.blocking:
                self.channel.send(item)
                continue

            pageview_id = self.channel.create_pageview(item.payload)
            if pageview_id is None:
                # Fall back to fire-and-forget; this page load stays untracked
                self.channel.send(Outbound(item.path, item.payload))
                logger.debug("Pageview id unavailable, tracking disabled for page load")
                continue

            self.ctx, follow_up = attach_pageview(self.ctx, pageview_id)
            self._deliver(follow_up)

    def close(self) -> None:
        self.channel.close()
