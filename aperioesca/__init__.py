"""
Aperioesca meal-photo analysis.

Resilience layer around a vision-model call: daily quota, circuit breaker,
classified errors with bounded retries, and a two-tier relay.
"""

__version__ = "0.1.0"
