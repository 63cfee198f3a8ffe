"""Command line interface for stackweaver."""
