from fastapi import Request

from src.sentinel.services.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    """The process Runtime attached by the application factory."""
    return request.app.state.runtime
