"""lfsbuild - source-based package builder for LFS-style systems."""

__version__ = "1.0.0"
