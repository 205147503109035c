"""Data load package: statement execution, export manifests and S3 COPY."""
