"""External collaborators: challenge provider, action executors, config watcher."""
