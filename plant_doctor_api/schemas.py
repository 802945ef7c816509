from pydantic import BaseModel, ConfigDict, Field


class UploadRequest(BaseModel):
    content: bytes
    filename: str
    mime_type: str


class StoredImageReference(BaseModel):
    filename: str
    path: str
    download_url: str


class AnalysisResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysis: str
    image_url: str | None = Field(default=None, alias="imageUrl")
    uploaded_at: str | None = Field(default=None, alias="uploadedAt")


class ErrorResponse(BaseModel):
    error: str


class ConfigStatus(BaseModel):
    configured: bool
    message: str
    missing: list[str] | None = None
