import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from database import db, create_document, find_by_id, serialize_doc
from media import delete_image, save_image
from schemas import HeroSection
from security import require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hero-sections", tags=["hero sections"])


def hero_or_404(hero_id: str) -> dict:
    hero = find_by_id("hero_section", hero_id)
    if not hero:
        raise HTTPException(status_code=404, detail="Hero section not found")
    return hero


@router.get("/active")
def active_hero_sections():
    heroes = [serialize_doc(h) for h in db["hero_section"].find({"is_active": True}).sort("order", 1)]
    return {"success": True, "hero_sections": heroes}


@router.get("")
async def list_hero_sections(user: dict = Depends(require_roles("admin"))):
    heroes = [serialize_doc(h) for h in db["hero_section"].find({}).sort("order", 1)]
    return {"success": True, "hero_sections": heroes}


@router.post("", status_code=201)
async def create_hero_section(
    title: str = Form(...),
    description: str = Form(...),
    order: int = Form(0),
    is_active: bool = Form(True),
    image: UploadFile = File(...),
    user: dict = Depends(require_roles("admin")),
):
    stored = await save_image(image, folder="hero-sections")
    hero = HeroSection(title=title, description=description, order=order, is_active=is_active,
                       image=stored["url"], image_public_id=stored["public_id"])
    hid = create_document("hero_section", hero)
    logger.info("Hero section %s created by %s", hid, user["email"])
    return {"success": True, "hero_section": serialize_doc(find_by_id("hero_section", hid))}


@router.put("/{hero_id}")
async def update_hero_section(
    hero_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    order: Optional[int] = Form(None),
    is_active: Optional[bool] = Form(None),
    image: Optional[UploadFile] = File(None),
    user: dict = Depends(require_roles("admin")),
):
    hero = hero_or_404(hero_id)
    update = {k: v for k, v in {"title": title, "description": description, "order": order,
                                "is_active": is_active}.items() if v is not None}
    if image is not None and image.filename:
        stored = await save_image(image, folder="hero-sections")
        delete_image(hero.get("image_public_id"))
        update.update(image=stored["url"], image_public_id=stored["public_id"])
    update["updated_at"] = datetime.utcnow()
    db["hero_section"].update_one({"_id": hero["_id"]}, {"$set": update})
    return {"success": True, "hero_section": serialize_doc(find_by_id("hero_section", hero_id))}


@router.delete("/{hero_id}")
async def delete_hero_section(hero_id: str, user: dict = Depends(require_roles("admin"))):
    hero = hero_or_404(hero_id)
    delete_image(hero.get("image_public_id"))
    db["hero_section"].delete_one({"_id": hero["_id"]})
    return {"success": True, "message": "Hero section deleted successfully"}


@router.patch("/{hero_id}/toggle")
async def toggle_hero_section(hero_id: str, user: dict = Depends(require_roles("admin"))):
    hero = hero_or_404(hero_id)
    db["hero_section"].update_one({"_id": hero["_id"]},
                                  {"$set": {"is_active": not hero.get("is_active", True), "updated_at": datetime.utcnow()}})
    return {"success": True, "hero_section": serialize_doc(find_by_id("hero_section", hero_id))}
