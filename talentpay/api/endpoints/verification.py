import re

from fastapi import APIRouter, Depends

from talentpay.config import Settings
from talentpay.core.constants import EMAIL_PATTERN
from talentpay.core.dependencies import get_settings, get_verification_codes
from talentpay.core.exceptions import ValidationError
from talentpay.schemas.verification import VerificationCodeRequest, VerifyEmailRequest
from talentpay.services.verification_codes import VerificationCodeService

router = APIRouter()


@router.post("/send-verification-code")
@router.post("/resend-verification")
async def send_verification_code(
    request: VerificationCodeRequest,
    codes: VerificationCodeService = Depends(get_verification_codes),
    config: Settings = Depends(get_settings),
):
    """Issue a fresh 6-digit code for the email (valid for 10 minutes)."""
    if not request.email or not re.match(EMAIL_PATTERN, request.email.strip()):
        raise ValidationError("email", "Email is required")

    code = await codes.issue(request.email.strip().lower(), request.transaction_id)
    response = {"success": True, "message": "Verification code sent"}
    # Delivery is handled outside this service; expose the code only in debug
    if config.DEBUG:
        response["code"] = code
    return response


@router.post("/verify-email")
async def verify_email(
    request: VerifyEmailRequest,
    codes: VerificationCodeService = Depends(get_verification_codes),
):
    """Confirm a code and flag the related payment as email-verified."""
    if not request.email or not request.verification_code:
        raise ValidationError("verificationCode", "Email and code required")

    await codes.verify(
        request.email.strip().lower(),
        request.verification_code,
        request.transaction_id,
    )
    return {"success": True, "message": "Email verified successfully"}
