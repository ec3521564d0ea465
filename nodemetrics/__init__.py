"""Node and container resource-usage storage, a scrape loop with health probes, and metric instruments."""

__version__ = "0.1.0"

__all__ = ["address_resolver", "health", "metrics", "server", "storage", "types"]