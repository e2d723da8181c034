"""Release bundles: export a release as a portable archive, apply it elsewhere."""

__version__ = "0.1.0"
