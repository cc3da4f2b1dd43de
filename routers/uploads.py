from fastapi import APIRouter, Depends, File, UploadFile

from media import save_image
from security import STAFF_ROLES, require_roles

router = APIRouter(prefix="/api/upload", tags=["uploads"])


@router.post("/single")
async def upload_single(image: UploadFile = File(...), user: dict = Depends(require_roles(*STAFF_ROLES))):
    stored = await save_image(image, folder="products")
    return {"success": True, "message": "Image uploaded successfully", "image": stored}
