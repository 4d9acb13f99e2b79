"""Backend adapters (persistent stores)."""
