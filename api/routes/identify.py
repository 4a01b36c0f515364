"""
Identify API endpoint.

Accepts an email and/or phone number and answers with the consolidated
identity those details belong to.
"""
import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, model_validator

from config.settings import settings
from api.services.contact_normalize import normalize_identifiers
from api.services.errors import InvalidInputError
from api.services.identity_resolver import get_identity_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identify", tags=["identify"])


class IdentifyRequest(BaseModel):
    """Identify request schema. Null and empty values count as absent."""
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @model_validator(mode="after")
    def normalize(self) -> "IdentifyRequest":
        try:
            self.email, self.phoneNumber = normalize_identifiers(
                self.email, self.phoneNumber, lowercase_emails=settings.lowercase_emails
            )
        except InvalidInputError as e:
            raise ValueError(e.message) from e
        return self


class ContactResponse(BaseModel):
    """Consolidated identity."""
    primaryContactId: int
    emails: list[str]
    phoneNumbers: list[str]
    secondaryContactIds: list[int]


class IdentifyResponse(BaseModel):
    """Response envelope for /identify."""
    contact: ContactResponse


@router.post("", response_model=IdentifyResponse)
async def identify(request: IdentifyRequest) -> IdentifyResponse:
    """
    Identify a customer from an email and/or phone number.

    Links the details to any existing identity sharing either value,
    merging identities when the request bridges two of them.
    """
    resolver = get_identity_resolver()
    view = resolver.identify(email=request.email, phone_number=request.phoneNumber)
    logger.info(
        f"Identified contact {view.primary_contact_id} "
        f"({len(view.secondary_contact_ids)} secondaries)"
    )
    return IdentifyResponse(contact=ContactResponse(**view.to_dict()))
