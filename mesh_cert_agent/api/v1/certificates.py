from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from mesh_cert_agent.core.errors import (
    CertificateDiscoveryError,
    EncodingError,
    HandshakeError,
    MissingAddressError,
    MissingConfigError,
    MissingContainerError,
    MissingPortError,
    NotFoundError,
    NotReadyError,
    PodCacheError,
    UnexpectedChainShapeError,
)
from mesh_cert_agent.models.certificates import ControlPlaneCerts, ErrorDetail
from mesh_cert_agent.services.certificates import CertificatesClient

router = APIRouter()

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    NotReadyError: 503,
    PodCacheError: 503,
    MissingAddressError: 503,
    MissingContainerError: 422,
    MissingPortError: 422,
    MissingConfigError: 422,
    UnexpectedChainShapeError: 422,
    HandshakeError: 502,
    EncodingError: 500,
}


def status_code_for(error: CertificateDiscoveryError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


def error_response(error: CertificateDiscoveryError) -> JSONResponse:
    body = ErrorDetail(error=type(error).__name__, detail=str(error))
    return JSONResponse(status_code=status_code_for(error), content=body.model_dump())


def get_certificates_client(request: Request) -> CertificatesClient:
    certificates_client = getattr(request.app.state, "certificates_client", None)
    if certificates_client is None:
        raise HTTPException(status_code=503, detail="Kubernetes client not initialized")
    return certificates_client


@router.get(
    "/certificates/control-plane",
    response_model=ControlPlaneCerts,
    responses={404: {"model": ErrorDetail}, 502: {"model": ErrorDetail}, 503: {"model": ErrorDetail}},
)
def read_control_plane_certs(request: Request):
    try:
        return get_certificates_client(request).get_control_plane_certs()
    except CertificateDiscoveryError as e:
        return error_response(e)


@router.get("/certificates/control-plane/roots", response_class=PlainTextResponse)
def read_trust_anchors(request: Request):
    try:
        certs = get_certificates_client(request).get_control_plane_certs()
    except CertificateDiscoveryError as e:
        return error_response(e)
    return PlainTextResponse(certs.roots.raw.decode("utf-8"))


@router.get("/certificates/control-plane/issuer-chain", response_class=PlainTextResponse)
def read_issuer_chain(request: Request):
    try:
        certs = get_certificates_client(request).get_control_plane_certs()
    except CertificateDiscoveryError as e:
        return error_response(e)
    return PlainTextResponse(certs.issuer_crt_chain.raw.decode("ascii"))
