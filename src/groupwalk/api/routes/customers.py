"""Customer endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...models.domain import Dog
from ...schemas.customers import DogModel, GroupEligibleDogsResponse, IneligibleDogModel
from ..errors import to_http_exception
from .slots import get_slot_service

router = APIRouter(prefix="/customers", tags=["customers"])


def dog_to_model(dog: Dog) -> DogModel:
    return DogModel(
        dog_id=dog.dog_id,
        name=dog.name,
        size=dog.size.value,
        friendly_with_others=dog.friendly_with_others,
        group_approved=dog.group_approved,
    )


@router.get(
    "/{customer_id}/group-eligible-dogs",
    response_model=GroupEligibleDogsResponse,
    status_code=status.HTTP_200_OK,
)
def group_eligible_dogs(customer_id: str) -> GroupEligibleDogsResponse:
    try:
        result = get_slot_service().group_eligible_dogs(customer_id)
    except Exception as exc:
        raise to_http_exception(exc, f"check group eligibility for customer {customer_id}") from exc
    return GroupEligibleDogsResponse(
        customer_id=result.customer_id,
        eligible=[dog_to_model(dog) for dog in result.eligible],
        ineligible=[IneligibleDogModel(dog=dog_to_model(dog), reason=reason) for dog, reason in result.ineligible],
    )
