from pydantic import BaseModel


class SignatureUploadResponse(BaseModel):
    signature_url: str
    signature_path: str
