"""Core layer - scheduling, routing, templates and run orchestration."""
