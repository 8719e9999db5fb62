"""Command-line front-end for the voice chat client."""
