import logging
import os
import uuid
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool

from expenseflow.api.auth import get_current_active_user
from expenseflow.config import settings
from expenseflow.errors import ExpenseAppError, ValidationFailed
from expenseflow.models.user import User
from expenseflow.tools.ocr_tool import SUPPORTED_FORMATS, ocr_tool
from expenseflow.tools.receipt_parser import parse_receipt_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ocr", tags=["OCR"])


def _check_upload(file: UploadFile, content: bytes):
    if not (file.content_type or "").startswith("image/"):
        raise ValidationFailed("Only image files are allowed", code="INVALID_FILE_TYPE")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise ValidationFailed("File too large", code="FILE_TOO_LARGE",
                               details={"max_bytes": settings.MAX_UPLOAD_BYTES})


def _store(field: str, file: UploadFile, content: bytes) -> str:
    """Writes the upload under UPLOAD_DIR and returns its path."""
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    ext = os.path.splitext(file.filename or "")[1]
    path = os.path.join(settings.UPLOAD_DIR, f"{field}-{uuid.uuid4().hex}{ext}")
    with open(path, "wb") as f:
        f.write(content)
    return path


def _discard(path: str):
    if path and os.path.exists(path):
        os.remove(path)


async def _process(field: str, file: UploadFile) -> dict:
    content = await file.read()
    _check_upload(file, content)
    path = _store(field, file, content)
    try:
        text = await run_in_threadpool(ocr_tool.extract_text, content, file.content_type)
    finally:
        _discard(path)
    parsed = parse_receipt_text(text)
    logger.info(f"OCR on {file.filename}: amount={parsed.amount} confidence={parsed.confidence}")
    return {"extracted_text": text, "parsed_data": parsed.model_dump(mode="json")}


@router.post("/extract")
async def extract(receipt: UploadFile = File(...), current_user: User = Depends(get_current_active_user)):
    result = await _process("receipt", receipt)
    return {"message": "Text extracted successfully", **result}


@router.post("/batch-extract")
async def batch_extract(receipts: List[UploadFile] = File(...),
                        current_user: User = Depends(get_current_active_user)):
    if not receipts:
        raise ValidationFailed("No files uploaded", code="NO_FILES")
    if len(receipts) > settings.MAX_BATCH_FILES:
        raise ValidationFailed("Too many files", code="TOO_MANY_FILES",
                               details={"max_files": settings.MAX_BATCH_FILES})

    results = []
    for file in receipts:
        try:
            result = await _process("receipts", file)
            results.append({"filename": file.filename, **result})
        except ExpenseAppError as e:
            logger.error(f"Error processing {file.filename}: {e.message}")
            results.append({"filename": file.filename, "error": e.message, "code": e.code})

    return {"message": "Batch extraction completed", "results": results}


@router.get("/supported-formats")
async def supported_formats(current_user: User = Depends(get_current_active_user)):
    extensions = sorted({ext.lstrip(".") for exts in SUPPORTED_FORMATS.values() for ext in exts})
    return {
        "message": "Supported formats retrieved successfully",
        "formats": {
            "image": extensions,
            "max_file_size": f"{settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
            "max_files": settings.MAX_BATCH_FILES,
        },
    }
