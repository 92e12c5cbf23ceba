"""Command surfaces shared by the CLI."""
