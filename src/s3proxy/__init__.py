"""Read-through caching proxy for S3 objects."""
