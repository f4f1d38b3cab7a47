"""Backup/restore operation supervision.

An operation is started on the agent co-located with a deployment, polled until the
agent reports a terminal state, and mirrored into the resource store. Every status
write goes through the same precedence guard (``models.can_transition``), so the
stored record never regresses even when polls and abort requests race each other.
"""
