"""Adapters for the external collaborators (prompt, trigger, upgrade tool)."""
