"""S3-backed storage for resumable uploads, with an in-memory upload locker."""

__version__ = "0.1.0"