"""Command-line interface for the repository migration orchestrator."""
