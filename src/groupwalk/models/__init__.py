"""Domain and query models."""
