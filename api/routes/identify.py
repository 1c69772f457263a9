"""
Identify API endpoint.

Reconciles a submitted email/phone pair into its identity cluster and
returns the consolidated contact.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from api.services.identity_reconciler import get_identity_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identify"])


class IdentifyRequest(BaseModel):
    """
    Request body for /identify.

    Values are untyped here; the reconciler validates and normalizes them.
    """
    email: Optional[Any] = None
    phoneNumber: Optional[Any] = None


class ContactResponse(BaseModel):
    """Consolidated contact for one identity cluster."""
    primaryContactId: int
    emails: list[str]
    phoneNumbers: list[str]
    secondaryContactIds: list[int]


class IdentifyResponse(BaseModel):
    """Response from /identify."""
    contact: ContactResponse


# Blocking sqlite work: FastAPI runs plain def endpoints in its threadpool
@router.post("/identify", response_model=IdentifyResponse)
def identify(request: IdentifyRequest):
    """
    Resolve an (email, phoneNumber) submission to its identity cluster.

    Creates a primary contact for unseen identities, links clusters that the
    submission bridges, and records new information as a secondary contact.
    """
    reconciler = get_identity_reconciler()
    result = reconciler.identify(email=request.email, phone_number=request.phoneNumber)

    logger.debug(f"Identify outcome: {result.outcome.value} (primary {result.primary.id})")
    return IdentifyResponse(contact=ContactResponse(**result.summary.to_dict()))
