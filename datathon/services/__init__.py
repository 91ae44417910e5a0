"""Services wiring storage, scoring and configuration together."""
