"""OpenWhisk integration for asynchronous self-invocation."""

from .client import (
    ActionInvoker,
    MockInvoker,
    OpenWhiskConfig,
    OpenWhiskInvoker,
    action_url,
    create_invoker,
)

__all__ = [
    "ActionInvoker",
    "MockInvoker",
    "OpenWhiskConfig",
    "OpenWhiskInvoker",
    "action_url",
    "create_invoker",
]
