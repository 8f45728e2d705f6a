"""Hope Remote Log: disk-buffered device log ingestion with hourly S3 batches."""

__version__ = "1.0.0"
