from .user import User
from .site import Site
from .tracking import Pageview, ScrollSample, Click, PointerBatch
from .funnel import Funnel

__all__ = [
    "User",
    "Site",
    "Pageview",
    "ScrollSample",
    "Click",
    "PointerBatch",
    "Funnel",
]
