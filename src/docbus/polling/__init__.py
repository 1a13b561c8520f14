"""Periodic polling of the gateway with watermarks."""

from docbus.polling.poller import PeriodicPoller, PollerState, rate_to_millis, watermark_filter

__all__ = [
    "PeriodicPoller",
    "PollerState",
    "rate_to_millis",
    "watermark_filter",
]
