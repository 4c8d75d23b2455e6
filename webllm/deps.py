from fastapi import Request

from .orchestrator import TurnOrchestrator


def get_orchestrator(request: Request) -> TurnOrchestrator:
    """
    FastAPI dependency returning the orchestrator built at startup.

    Tests override this dependency to inject one wired to fake browser
    sessions and an in-memory Redis.
    """
    return request.app.state.orchestrator
