from __future__ import annotations

from fastapi import APIRouter, Depends

from ..db import get_store
from ..models import ConsolidatedContactModel, ErrorResponse, IdentifyRequest, IdentifyResponse
from ..repository import ContactStore
from ..services import IdentityResolver
from ..types import Observation

router = APIRouter(tags=["identity"])


def get_observation(body: IdentifyRequest) -> Observation:
    # raises before a store is provisioned when both identifiers are missing
    return body.to_observation()


def get_resolver(store: ContactStore = Depends(get_store)) -> IdentityResolver:
    return IdentityResolver(store)


@router.post(
    "/identify",
    response_model=IdentifyResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def identify(
    observation: Observation = Depends(get_observation),
    resolver: IdentityResolver = Depends(get_resolver),
) -> IdentifyResponse:
    result = resolver.identify(observation)
    return IdentifyResponse(contact=ConsolidatedContactModel.from_result(result))


__all__ = ["router", "get_observation", "get_resolver"]
