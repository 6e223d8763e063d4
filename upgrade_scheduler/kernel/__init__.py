"""Host-level primitives: config, state, locking, logging, paths."""
