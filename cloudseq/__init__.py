"""cloudseq - provision cloud resources in order and roll them back on failure."""

__version__ = "0.1.0"
