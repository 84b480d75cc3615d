from fastapi import Request

from .completion import CompletionService


def get_completion_service(request: Request) -> CompletionService:
    """
    FastAPI dependency returning the process-wide CompletionService that
    the application lifespan created.
    """
    service = getattr(request.app.state, "completion_service", None)
    if service is None:
        raise RuntimeError("Completion service not initialized")
    return service
