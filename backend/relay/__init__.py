"""Real-time group chat relay."""
