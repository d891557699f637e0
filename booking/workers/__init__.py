"""Background workers (run as separate processes)."""
