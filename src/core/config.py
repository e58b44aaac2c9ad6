"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RoutingConfig:
    """Limits and consistency switches used by the event router."""

    max_content_length: int = 5000
    # Re-read friend/block sets before each check instead of trusting the
    # snapshot taken when the connection opened.
    refresh_relationships: bool = False
