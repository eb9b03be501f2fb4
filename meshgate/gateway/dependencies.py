"""
MeshGate — Gateway Dependencies
===============================

FastAPI dependency providers. The lifespan stores the dispatcher and the
orchestrator on app.state; tests replace them with
app.dependency_overrides.
"""

from typing import Type, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from meshgate.exceptions import ValidationError
from meshgate.gateway.dispatcher import GatewayDispatcher
from meshgate.gateway.registration import RegistrationOrchestrator

M = TypeVar("M", bound=BaseModel)


def get_dispatcher(request: Request) -> GatewayDispatcher:
    return request.app.state.dispatcher


def get_orchestrator(request: Request) -> RegistrationOrchestrator:
    return request.app.state.orchestrator


def build_query(model: Type[M], **values) -> M:
    """
    Build a request schema from query parameters.

    Cross-field rules (date ordering) live on the schemas, so they surface
    here rather than in FastAPI's own parameter validation.

    Raises:
        ValidationError: the combination of values is invalid (→ 400)
    """
    try:
        return model(**values)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", "Invalid query parameters")
        raise ValidationError(message=message, field=field)
