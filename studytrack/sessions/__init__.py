"""Session lifecycle: create, resume, update, reconcile, list."""
