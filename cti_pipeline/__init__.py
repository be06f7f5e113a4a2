"""
Cross-source threat intelligence correlation pipeline.

Collects infrastructure exposure (Shodan) and social discussion (X.com),
correlates the indicators they share, runs a four-stage analysis with
deterministic fallbacks and publishes a dashboard artifact.
"""

__version__ = "2.0.0"
