"""
Docker service entry points for the risk engine.

Each subdirectory contains a standalone service.

Services:
    risk-monitor: Reading ingestion, classification, alerting and escalation
"""
