"""Opsdesk task lifecycle core: daily instances, evidence submissions and the task board."""
