"""Command-line interface (``modelkeeper`` console script)."""
