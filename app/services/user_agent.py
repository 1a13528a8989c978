"""
User-agent attribution for pageviews.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from user_agents import parse as parse_ua

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ParsedUserAgent:
    device: str  # desktop, mobile, tablet
    browser: str
    os: str


def get_device_type(ua) -> str:
    if ua.is_tablet:
        return "tablet"
    elif ua.is_mobile:
        return "mobile"
    else:
        return "desktop"


@lru_cache(maxsize=2048)
def parse_user_agent(user_agent_string: Optional[str]) -> ParsedUserAgent:
    """Parse a raw UA header. Missing headers count as an unknown desktop."""
    if not user_agent_string:
        return ParsedUserAgent(device="desktop", browser=UNKNOWN, os=UNKNOWN)

    ua = parse_ua(user_agent_string)
    browser = ua.browser.family if ua.browser.family != "Other" else UNKNOWN
    os_name = ua.os.family if ua.os.family != "Other" else UNKNOWN
    return ParsedUserAgent(device=get_device_type(ua), browser=browser, os=os_name)
