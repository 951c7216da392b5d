"""
Upload API Endpoints

Prescription file upload for quotation requests.
"""

from typing import Any, Dict

from fastapi import APIRouter, File, HTTPException, UploadFile

from app.quotation.errors import DependencyFailure, ValidationError
from app.uploads.prescriptions import get_prescription_uploader

router = APIRouter()


@router.post("/prescription", response_model=Dict[str, Any], status_code=201)
async def upload_prescription(file: UploadFile = File(...)):
    """Store a prescription image or PDF; returns the URL to put on the quotation."""
    content = await file.read()
    uploader = get_prescription_uploader()
    try:
        url = await uploader.store(file.filename or "prescription", content, file.content_type or "")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except DependencyFailure as e:
        raise HTTPException(status_code=502, detail=e.message)

    return {
        "url": url,
        "filename": file.filename,
        "size": len(content),
        "mime_type": file.content_type,
    }
