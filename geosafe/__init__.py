"""
GeoSafe mine-site risk engine.

Ingests geological and weather sensor readings for open-pit mine sites,
classifies rockfall risk, and manages the alert lifecycle that follows a
high-risk classification.

This package provides:
- Data models for sensors, readings, classifications, and alerts
- A remote prediction client and a rule-based fallback classifier
- The alert lifecycle engine and auto-escalation sweep
- Storage clients for Redis and PostgreSQL
- Configuration management
"""

__version__ = "0.1.0"
