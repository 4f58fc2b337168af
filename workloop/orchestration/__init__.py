"""Coordinator state machine and its composition root."""
