from pydantic import BaseModel, Field
from typing import List

class ExportResult(BaseModel):
    success: bool = True
    downloadUrl: str
    downloadId: str
    message: str = "Design customized successfully. Your download will start automatically."
    expiresIn: str = "24 hours"
    # Fonts used by the template that could not be embedded
    skippedFonts: List[str] = Field(default_factory=list)

class DownloadStatus(BaseModel):
    fileId: str
    ready: bool

class PlaceholderData(BaseModel):
    filename: str
    placeholders: List[str] = Field(default_factory=list)  # display labels, duplicates kept
    totalPlaceholders: int
    requestedAt: str

class PlaceholderResponse(BaseModel):
    success: bool = True
    message: str = "SVG file processed successfully"
    data: PlaceholderData
