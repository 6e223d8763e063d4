"""Per-invocation runtime: dispatch and orchestration."""
