"""SQLite persistence for operation records and scheduled jobs."""
