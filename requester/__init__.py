"""HTTP helpers, a multi-connection resumable downloader and a parallel block uploader."""

__version__ = "0.1.0"