import os
import secrets
import time

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from constants import UPLOAD_DIR, MAX_UPLOAD_BYTES
from routers.auth import current_user
from schemas.users import UploadResponse
from logging_config import get_logger

logger = get_logger(__name__)

uploads_router = APIRouter(prefix="/upload", tags=["uploads"])

CHUNK_SIZE = 64 * 1024


def unique_filename(original: str) -> str:
    ext = os.path.splitext(original or "")[1].lower()
    return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


async def save_upload(file: UploadFile) -> str:
    """Stream an upload into UPLOAD_DIR, enforcing MAX_UPLOAD_BYTES. Returns the public path."""
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    filename = unique_filename(file.filename)
    target = os.path.join(UPLOAD_DIR, filename)

    # File I/O goes through the threadpool
    size = 0
    too_large = False
    f = await run_in_threadpool(open, target, "wb")
    try:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > MAX_UPLOAD_BYTES:
                too_large = True
                break
            await run_in_threadpool(f.write, chunk)
    finally:
        await run_in_threadpool(f.close)

    if too_large:
        await run_in_threadpool(os.remove, target)
        logger.warning(f"Upload {file.filename} rejected: larger than {MAX_UPLOAD_BYTES} bytes")
        raise HTTPException(status_code=413, detail=f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB")
    if size == 0:
        await run_in_threadpool(os.remove, target)
        raise HTTPException(status_code=400, detail="No file uploaded")

    logger.info(f"Stored upload {file.filename} as {filename} ({size} bytes)")
    return f"/uploads/{filename}"


@uploads_router.post("/image", response_model=UploadResponse)
async def upload_image(image: UploadFile = File(...), username: str = Depends(current_user)):
    if not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed!")
    return UploadResponse(path=await save_upload(image))


@uploads_router.post("/pdf", response_model=UploadResponse)
async def upload_pdf(pdf: UploadFile = File(...), username: str = Depends(current_user)):
    if pdf.content_type != "application/pdf":
        raise HTTPException(status_code=400, detail="Only PDF files are allowed!")
    return UploadResponse(path=await save_upload(pdf))
