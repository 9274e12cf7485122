"""Rack telemetry ingestion service.

Consumes device telemetry from MQTT, keeps live device/slot state, filters
sensor noise, raises deduplicated stock and liveness alerts and fans out
notifications to real-time subscribers and user webhooks.
"""

__version__ = "0.1.0"
