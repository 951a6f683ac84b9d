"""
StatusWatch: status page aggregator.

Polls Atlassian Statuspage, incident.io and Instatus pages concurrently,
normalizes them into one model, and announces meaningful status changes.
"""

__version__ = "1.0.0"
