from fastapi import APIRouter, Depends

from ..deps import Container, get_container
from ..domain import RateLimitDecision
from .. import schemas

router = APIRouter(prefix="/otp", tags=["otp"])

def otp_quota(req: schemas.OtpRequest, c: Container = Depends(get_container)) -> RateLimitDecision:
    """
    Dependencia para cualquier endpoint que dispare un OTP. Lanza RateLimited
    (429 + Retry-After) cuando el teléfono agotó su ventana.
    """
    return c.limiter.check(req.phone_number.strip())

@router.post("/request", response_model=schemas.RateLimitOut, status_code=202)
def otp_request(decision: RateLimitDecision = Depends(otp_quota)):
    # La generación y el envío del código los hace el servicio de autenticación
    return schemas.RateLimitOut.model_validate(decision)
