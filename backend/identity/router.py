"""
Identity Reconciliation - API Router

Provides the REST endpoint for identity reconciliation:
- POST /identify - Resolve an email and/or phone number to its contact

Status codes:
- 200: reconciled
- 400: invalid or empty fragment
- 500: internal consistency fault
- 503: transient store failure, safe to retry
"""

import logging
from typing import Optional, Union

from email_validator import validate_email, EmailNotValidError
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator, model_validator

from config import get_settings
from sentry_integration import capture_exception
from utils.validation_errors import ValidationErrorResponse

from .errors import ConsistencyError, InvalidFragmentError, TransientStoreError
from .service import ReconciliationService, normalize_email, normalize_phone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Identity"])


# ==================== REQUEST MODELS ====================

class IdentifyRequest(BaseModel):
    """Request model for identity reconciliation"""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "email": "lorraine@hillvalley.edu",
                "phoneNumber": "123456"
            }
        }
    )

    email: Optional[StrictStr] = Field(None, description="Email address")
    phone_number: Optional[Union[StrictStr, StrictInt]] = Field(
        None, alias="phoneNumber", description="Phone number (string or number)"
    )

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        v = normalize_email(v)
        if v is None:
            return None
        try:
            validate_email(v, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(f"email is not a valid address: {e}")
        return v

    @field_validator("phone_number")
    @classmethod
    def normalize_phone_number(cls, v):
        return normalize_phone(v)

    @model_validator(mode="after")
    def require_fragment(self):
        if self.email is None and self.phone_number is None:
            raise ValueError("Either email or phoneNumber must be provided")
        return self


# ==================== DEPENDENCIES ====================

def get_reconciliation_service(request: Request) -> ReconciliationService:
    """Build the service over the store opened at application startup."""
    store = getattr(request.app.state, "contact_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Contact store is not initialized"
        )
    return ReconciliationService(
        store,
        step_delay_ms=get_settings().IDENTIFY_STEP_DELAY_MS
    )


# ==================== ENDPOINTS ====================

@router.post("/identify")
async def identify(
    request: IdentifyRequest,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """
    Reconcile an identity fragment.

    **Rules:**
    - Unknown fragment creates a new primary contact
    - A fragment bridging two identities merges them; the oldest stays primary
    - New information on a known identity creates a secondary contact
    - Repeating a known fragment changes nothing
    """
    try:
        result = await service.identify(
            email=request.email,
            phone_number=request.phone_number
        )
    except InvalidFragmentError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ValidationErrorResponse.validation_error(str(e))
        )
    except TransientStoreError as e:
        logger.warning(f"identify failed transiently: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Temporarily unavailable, retry the request"
        )
    except ConsistencyError as e:
        logger.error(f"identify consistency fault: {e}")
        capture_exception(e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error"
        )

    return result.to_dict()
