import logging
import os
import secrets
from pathlib import Path

from fastapi import HTTPException, UploadFile

from config import settings

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
CHUNK_SIZE = 64 * 1024


def media_root() -> Path:
    root = Path(settings.MEDIA_ROOT)
    root.mkdir(parents=True, exist_ok=True)
    return root


async def save_image(file: UploadFile, folder: str = "uploads") -> dict:
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    chunks, size = [], 0
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > settings.MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=400, detail="File too large")
        chunks.append(chunk)
    data = b"".join(chunks)
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")

    public_id = f"{folder}/{secrets.token_hex(12)}{ALLOWED_IMAGE_TYPES[file.content_type]}"
    target = media_root() / public_id
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    logger.info("Stored upload %s (%d bytes)", public_id, len(data))
    return {
        "url": f"{settings.MEDIA_URL.rstrip('/')}/{public_id}",
        "public_id": public_id,
        "name": file.filename,
        "size": len(data),
    }


def delete_image(public_id: str) -> bool:
    if not public_id:
        return False
    target = (media_root() / public_id).resolve()
    if media_root().resolve() not in target.parents:
        logger.warning("Refusing to delete %s outside media root", public_id)
        return False
    try:
        os.remove(target)
        return True
    except FileNotFoundError:
        return False
