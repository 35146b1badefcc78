"""Public site content (pages, menus, blocks, blog, settings) and its admin endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import require_admin
from ..database import get_session
from ..schemas import (BlogPostIn, BlogPostUpdate, ContentBlockIn, ContentBlockUpdate, InquiryIn, InquiryUpdate, MenuIn,
                       MenuItemIn, MenuItemUpdate, MenuUpdate, PageIn, PageUpdate, ReorderIn, SettingsUpdate)
from ..services.cms import (BlogService, ContentService, InquiryService, MediaService, MenuService, PageService,
                            SettingsService)
from ..utils.rate_limit import enforce_rate_limit
from ..utils.uploads import read_upload

router = APIRouter(tags=["cms"])


# -- pages ----------------------------------------------------------------

@router.get("/pages")
def list_pages(db: Session = Depends(get_session)):
    return {"pages": PageService(db).list()}


@router.get("/pages/{slug}")
def page_detail(slug: str, db: Session = Depends(get_session)):
    return PageService(db).get(slug)


@router.get("/admin/pages")
def admin_list_pages(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return {"pages": PageService(db).list(published_only=False)}


@router.post("/admin/pages", status_code=201)
def admin_create_page(payload: PageIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return PageService(db).create(admin, payload.model_dump())


@router.put("/admin/pages/{page_id}")
def admin_update_page(page_id: int, payload: PageUpdate, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return PageService(db).update(page_id, payload.model_dump(exclude_unset=True))


@router.delete("/admin/pages/{page_id}")
def admin_delete_page(page_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    PageService(db).delete(page_id)
    return {"message": "Page deleted"}


# -- menus ----------------------------------------------------------------

@router.get("/menus")
def list_menus(location: Optional[models.MenuLocation] = None, include_items: bool = False,
               include_inactive: bool = False, db: Session = Depends(get_session)):
    return {"menus": MenuService(db).list(location, include_items, include_inactive)}


@router.get("/menus/by-location/{location}")
def menu_by_location(location: str, db: Session = Depends(get_session)):
    """Active menu for a location with its items nested into a tree."""
    return MenuService(db).by_location(location)


@router.get("/menus/{menu_id}")
def menu_detail(menu_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return MenuService(db).detail(menu_id)


@router.post("/menus", status_code=201)
def create_menu(payload: MenuIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return MenuService(db).create(payload.model_dump()).model_dump()


@router.put("/menus/{menu_id}")
def update_menu(menu_id: int, payload: MenuUpdate, db: Session = Depends(get_session),
                admin: models.User = Depends(require_admin)):
    return MenuService(db).update(menu_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/menus/{menu_id}")
def delete_menu(menu_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    MenuService(db).delete(menu_id)
    return {"message": "Menu deleted"}


@router.post("/menus/{menu_id}/items", status_code=201)
def add_menu_item(menu_id: int, payload: MenuItemIn, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    return MenuService(db).add_item(menu_id, payload.model_dump()).model_dump()


@router.post("/menus/{menu_id}/items/reorder")
def reorder_menu_items(menu_id: int, payload: ReorderIn, db: Session = Depends(get_session),
                       admin: models.User = Depends(require_admin)):
    return {"items": MenuService(db).reorder(menu_id, payload.item_ids)}


@router.put("/menus/{menu_id}/items/{item_id}")
def update_menu_item(menu_id: int, item_id: int, payload: MenuItemUpdate, db: Session = Depends(get_session),
                     admin: models.User = Depends(require_admin)):
    return MenuService(db).update_item(menu_id, item_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/menus/{menu_id}/items/{item_id}")
def delete_menu_item(menu_id: int, item_id: int, db: Session = Depends(get_session),
                     admin: models.User = Depends(require_admin)):
    removed = MenuService(db).delete_item(menu_id, item_id)
    return {"message": "Menu item deleted", "removed": removed}


# -- content blocks and homepage ----------------------------------------------

@router.get("/homepage")
def homepage(db: Session = Depends(get_session)):
    return ContentService(db).homepage()


@router.get("/content/{kind}")
def content_by_kind(kind: models.ContentKind, db: Session = Depends(get_session)):
    return {"items": ContentService(db).by_kind(kind)}


@router.get("/admin/content/{kind}")
def admin_content_by_kind(kind: models.ContentKind, db: Session = Depends(get_session),
                          admin: models.User = Depends(require_admin)):
    return {"items": ContentService(db).by_kind(kind, active_only=False)}


@router.post("/admin/content", status_code=201)
def admin_create_block(payload: ContentBlockIn, db: Session = Depends(get_session),
                       admin: models.User = Depends(require_admin)):
    return ContentService(db).create(payload.model_dump()).model_dump()


@router.put("/admin/content/{block_id}")
def admin_update_block(block_id: int, payload: ContentBlockUpdate, db: Session = Depends(get_session),
                       admin: models.User = Depends(require_admin)):
    return ContentService(db).update(block_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/content/{block_id}")
def admin_delete_block(block_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    ContentService(db).delete(block_id)
    return {"message": "Content block deleted"}


# -- blog -------------------------------------------------------------------

@router.get("/blog/posts")
def list_posts(category: Optional[str] = None, search: Optional[str] = None, page: int = Query(1, ge=1),
               limit: int = Query(10, ge=1, le=50), db: Session = Depends(get_session)):
    return BlogService(db).list(page, limit, category, search)


@router.get("/blog/categories")
def blog_categories(db: Session = Depends(get_session)):
    return {"categories": BlogService(db).categories()}


@router.get("/blog/posts/{slug}")
def post_detail(slug: str, db: Session = Depends(get_session)):
    return BlogService(db).get(slug).model_dump()


@router.post("/blog/posts/{slug}/view")
def record_post_view(slug: str, db: Session = Depends(get_session)):
    return {"views": BlogService(db).record_view(slug)}


@router.get("/admin/blog/posts")
def admin_list_posts(category: Optional[str] = None, search: Optional[str] = None, page: int = Query(1, ge=1),
                     limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_session),
                     admin: models.User = Depends(require_admin)):
    return BlogService(db).list(page, limit, category, search, published_only=False)


@router.post("/admin/blog/posts", status_code=201)
def admin_create_post(payload: BlogPostIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return BlogService(db).create(admin, payload.model_dump()).model_dump()


@router.put("/admin/blog/posts/{post_id}")
def admin_update_post(post_id: int, payload: BlogPostUpdate, db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return BlogService(db).update(post_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/blog/posts/{post_id}")
def admin_delete_post(post_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    BlogService(db).delete(post_id)
    return {"message": "Post deleted"}


# -- settings ---------------------------------------------------------------

@router.get("/settings/site")
def site_settings(db: Session = Depends(get_session)):
    """Public settings: general and branding values plus enabled gateways."""
    return SettingsService(db).public_settings()


@router.get("/admin/settings")
def admin_settings(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return {"settings": SettingsService(db).admin_settings()}


@router.put("/admin/settings")
def admin_update_settings(payload: SettingsUpdate, db: Session = Depends(get_session),
                          admin: models.User = Depends(require_admin)):
    return {"settings": SettingsService(db).update(payload.settings)}


# -- media ------------------------------------------------------------------

@router.post("/admin/media", status_code=201)
def admin_upload_media(file: UploadFile = File(...), db: Session = Depends(get_session),
                       admin: models.User = Depends(require_admin)):
    if not file.filename:
        raise HTTPException(status_code=400, detail="no file")
    payload = read_upload(file)
    media = MediaService(db).upload(admin, payload, file.filename, file.content_type)
    return {**media.model_dump(), "url": f"/media/{media.stored_name}"}


@router.get("/admin/media")
def admin_list_media(kind: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return MediaService(db).list(page, limit, kind)


@router.delete("/admin/media/{media_id}")
def admin_delete_media(media_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    MediaService(db).delete(media_id)
    return {"message": "Media file deleted"}


# -- inquiries --------------------------------------------------------------

@router.post("/inquiries", status_code=201)
def create_inquiry(payload: InquiryIn, request: Request, db: Session = Depends(get_session)):
    enforce_rate_limit(request)
    inquiry = InquiryService(db).create(payload.model_dump())
    return {"message": "Thank you, we will get back to you shortly", "id": inquiry.id}


@router.get("/admin/inquiries")
def admin_list_inquiries(status: Optional[models.InquiryStatus] = None, kind: Optional[models.InquiryKind] = None,
                         page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                         db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return InquiryService(db).list(page, limit, status, kind)


@router.patch("/admin/inquiries/{inquiry_id}")
def admin_update_inquiry(inquiry_id: int, payload: InquiryUpdate, db: Session = Depends(get_session),
                         admin: models.User = Depends(require_admin)):
    return InquiryService(db).update(inquiry_id, payload.model_dump(exclude_unset=True)).model_dump()


@router.delete("/admin/inquiries/{inquiry_id}")
def admin_delete_inquiry(inquiry_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    InquiryService(db).delete(inquiry_id)
    return {"message": "Inquiry deleted"}
