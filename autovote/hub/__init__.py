"""Hub: settings registry, persistence, resolution and the run-loop scheduler."""
