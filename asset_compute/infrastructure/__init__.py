"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: S3 transfer gateway and temporary cloud storage
- telemetry: event and metrics delivery
- openwhisk: asynchronous self-invocation of the action
"""
