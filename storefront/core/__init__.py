"""Core business logic: order workflow, inventory, catalogue and saga helper."""
