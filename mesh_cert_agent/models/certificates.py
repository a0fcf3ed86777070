from pydantic import BaseModel


class CertData(BaseModel):
    raw: bytes


class ControlPlaneCerts(BaseModel):
    roots: CertData
    issuer_crt_chain: CertData


class ErrorDetail(BaseModel):
    error: str
    detail: str
