from talentpay.schemas.payment import CamelModel


class VerificationCodeRequest(CamelModel):
    email: str | None = None
    transaction_id: str | None = None


class VerifyEmailRequest(CamelModel):
    email: str | None = None
    verification_code: str | None = None
    transaction_id: str | None = None
