"""Command-line applications built on ctcalib."""
