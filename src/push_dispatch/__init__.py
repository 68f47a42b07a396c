"""Push Dispatch - device token registry and push notification fan-out.

This package maintains a registry of device push tokens per recipient and
delivers notifications through a pluggable delivery gateway, splitting large
target sets into gateway-sized chunks sent concurrently.
"""

from push_dispatch.__main__ import main

__all__ = ["main"]
