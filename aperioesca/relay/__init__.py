"""Analysis relay: authenticated server-side mirror of the resilience pipeline."""
