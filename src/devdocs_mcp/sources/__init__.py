"""Per-ecosystem documentation adapters."""
