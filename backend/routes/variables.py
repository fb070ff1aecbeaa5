"""Variable expansion preview."""

from fastapi import APIRouter
from pydantic import BaseModel

from bvg.schemas.models import Variable
from bvg.variables import expand

router = APIRouter()


class ExpandRequest(BaseModel):
    variables: list[Variable] = []


class ExpandResponse(BaseModel):
    count: int
    combinations: list[dict[str, str]]


@router.post("/variables/expand", response_model=ExpandResponse)
async def expand_variables(request: ExpandRequest):
    """Preview the combinations a batch would generate."""
    combinations = expand(request.variables)
    return ExpandResponse(count=len(combinations), combinations=combinations)
