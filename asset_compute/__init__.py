"""
Asset Compute worker support library.

Helpers for serverless asset compute worker actions:
- core: worker pipeline, errors, telemetry, web action dispatch, utilities
- infrastructure: S3 transfer, temporary cloud storage, telemetry and
  OpenWhisk clients
- api: FastAPI front end for the web action
- config: Application configuration
"""

__version__ = "0.1.0"
