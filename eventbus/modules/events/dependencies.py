"""FastAPI dependencies for the events module."""

from fastapi import Request

from eventbus.modules.events.registry import HandlerRegistry
from eventbus.modules.events.retry import RetryPolicy
from eventbus.modules.events.runtime import HandlerRuntime


def get_registry(request: Request) -> HandlerRegistry:
    """Handler registry built once in the application lifespan."""
    return request.app.state.registry


def get_runtime(request: Request) -> HandlerRuntime:
    return request.app.state.runtime


def get_retry_policy(request: Request) -> RetryPolicy:
    return request.app.state.retry_policy
