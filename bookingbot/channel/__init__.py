"""Chat channel adapters: webhook parsing and the event worker pool."""
