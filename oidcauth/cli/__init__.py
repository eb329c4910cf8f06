"""Command line interface for OIDCAuth."""
