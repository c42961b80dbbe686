"""
Campaign-creation intent detection.

A cheap, deterministic check run on every user chat message so the UI can offer the
guided campaign builder. Patterns are tried in order; the first match wins.
"""

import logging
import re
from typing import Optional

from adspirer.utils import truncate

logger = logging.getLogger(__name__)

# "campaign" and the misspellings users actually type
_CAMPAIGN = r"camp(?:aign|aing|agin|iagn|ain|aig)s?\b"

# Words allowed between the verb and "campaign" ("create a new amazon ad campaign")
_FILLER = (
    r"(?:(?:a|an|new|another|first|amazon|google|advertising|ad|ads|ppc|"
    r"sponsored|products?|brands?|search|display)\s+)*"
)

_VERB = r"(?:create|set\s*up|start|launch|build|make|begin)"

CAMPAIGN_CREATION_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"\b{_VERB}\s+{_FILLER}{_CAMPAIGN}",
        r"\bI\s+(?:want|need|would\s+like|'d\s+like)\s+to\s+create\b",
        r"\bhelp\s+me\s+(?:create|set\s*up|launch)\b",
        r"\bhow\s+(?:do|can|would|should)\s+I\s+create\b",
    )
)


def match_campaign_creation_intent(message: str) -> Optional[str]:
    """Return the first matching pattern's source, or None."""
    if not message:
        return None
    for pattern in CAMPAIGN_CREATION_PATTERNS:
        if pattern.search(message):
            return pattern.pattern
    return None


def detect_campaign_creation_intent(message: str) -> bool:
    matched = match_campaign_creation_intent(message)
    if matched:
        logger.info(f"Campaign creation intent in '{truncate(message, 50)}' (pattern: {matched})")
    return matched is not None
