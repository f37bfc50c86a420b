"""
Core worker logic.

Nothing in here talks to boto3 or FastAPI directly. Storage, telemetry and
invocation are passed in through the protocols defined next to the code that
uses them, so the pipeline can be exercised with fakes.
"""
