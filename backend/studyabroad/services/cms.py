"""CMS content: pages, menus, content blocks, blog, site settings,
media files and contact inquiries."""

import logging
from typing import Dict, List, Optional

from sqlmodel import Session

from .. import models, repositories
from ..config import gateway_config, settings
from ..database import utcnow
from ..errors import BadRequestError, ConflictError, NotFoundError
from ..serializers import course_summary, test_summary
from ..utils import uploads
from ..utils.pagination import pagination_block
from ..utils.text import mask_secret, slugify, unique_slug

logger = logging.getLogger("studyabroad.cms")

HOMEPAGE_KINDS = {
    "hero_slides": models.ContentKind.hero_slide,
    "features": models.ContentKind.feature,
    "statistics": models.ContentKind.statistic,
    "testimonials": models.ContentKind.testimonial,
    "partners": models.ContentKind.partner,
    "journey_steps": models.ContentKind.journey_step,
}

PUBLIC_CATEGORIES = ("general", "branding")
_TRUE = ("1", "true", "yes", "on")


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return "secret" in lowered or "password" in lowered


class PageService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.PageRepository(session)

    def list(self, published_only: bool = True) -> list:
        return [p.model_dump(exclude={"content"}) for p in self.repo.list(published_only)]

    def get(self, slug: str, include_drafts: bool = False) -> dict:
        page = self.repo.get_by_slug(slug)
        if not page or (not page.is_published and not include_drafts):
            raise NotFoundError("Page not found")
        sections = self.repo.sections(page.id, active_only=not include_drafts)
        return {**page.model_dump(), "sections": [s.model_dump() for s in sections]}

    def _replace_sections(self, page: models.Page, sections: List[dict]) -> None:
        for old in self.repo.sections(page.id):
            self.session.delete(old)
        for idx, data in enumerate(sections):
            data = dict(data)
            if data.get("order_index") is None:
                data["order_index"] = idx
            self.session.add(models.PageSection(page_id=page.id, **data))
        self.session.commit()

    def create(self, author: models.User, data: dict) -> dict:
        data = dict(data)
        sections = data.pop("sections", [])
        slug = slugify(data.pop("slug", None) or data["title"])
        if self.repo.get_by_slug(slug):
            raise ConflictError("A page with this slug already exists")
        page = models.Page(slug=slug, author_id=author.id, **data)
        if page.is_published:
            page.published_at = utcnow()
        page = self.repo.save(page)
        self._replace_sections(page, sections)
        return self.get(page.slug, include_drafts=True)

    def _by_id(self, page_id: int) -> models.Page:
        page = self.repo.get(page_id)
        if not page:
            raise NotFoundError("Page not found")
        return page

    def update(self, page_id: int, changes: dict) -> dict:
        page = self._by_id(page_id)
        sections = changes.pop("sections", None)
        if changes.get("slug"):
            slug = slugify(changes.pop("slug"))
            existing = self.repo.get_by_slug(slug)
            if existing and existing.id != page.id:
                raise ConflictError("A page with this slug already exists")
            page.slug = slug
        changes.pop("slug", None)
        if changes.get("is_published") and not page.is_published:
            page.published_at = utcnow()
        for key, value in changes.items():
            setattr(page, key, value)
        page.updated_at = utcnow()
        page = self.repo.save(page)
        if sections is not None:
            self._replace_sections(page, sections)
        return self.get(page.slug, include_drafts=True)

    def delete(self, page_id: int) -> None:
        page = self._by_id(page_id)
        for section in self.repo.sections(page.id):
            self.session.delete(section)
        self.session.delete(page)
        self.session.commit()


class MenuService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.MenuRepository(session)

    @staticmethod
    def build_tree(items: List[models.MenuItem]) -> list:
        """Nest items under their parents; orphans are promoted to the root."""
        nodes = {i.id: {**i.model_dump(), "children": []} for i in items}
        roots = []
        for item in items:
            node = nodes[item.id]
            parent = nodes.get(item.parent_id) if item.parent_id else None
            (parent["children"] if parent else roots).append(node)
        return roots

    def _out(self, menu: models.Menu, include_items: bool, include_inactive: bool = False) -> dict:
        data = menu.model_dump()
        if include_items:
            data["items"] = self.build_tree(self.repo.items(menu.id, include_inactive))
        return data

    def list(self, location: Optional[models.MenuLocation] = None, include_items: bool = False,
             include_inactive: bool = False) -> list:
        return [self._out(m, include_items, include_inactive) for m in self.repo.list(location, include_inactive)]

    def by_location(self, location: str) -> dict:
        try:
            loc = models.MenuLocation(location.upper())
        except ValueError:
            raise BadRequestError(f"Invalid menu location: {location}")
        menu = self.repo.active_at(loc)
        if not menu:
            raise NotFoundError("No active menu for this location")
        return self._out(menu, include_items=True)

    def get(self, menu_id: int) -> models.Menu:
        menu = self.repo.get(menu_id)
        if not menu:
            raise NotFoundError("Menu not found")
        return menu

    def detail(self, menu_id: int) -> dict:
        return self._out(self.get(menu_id), include_items=True, include_inactive=True)

    def create(self, data: dict) -> models.Menu:
        data = dict(data)
        slug = slugify(data.pop("slug", None) or data["name"])
        if self.repo.get_by_slug(slug):
            raise ConflictError("A menu with this slug already exists")
        return self.repo.save(models.Menu(slug=slug, **data))

    def update(self, menu_id: int, changes: dict) -> models.Menu:
        menu = self.get(menu_id)
        if changes.get("slug"):
            slug = slugify(changes.pop("slug"))
            existing = self.repo.get_by_slug(slug)
            if existing and existing.id != menu.id:
                raise ConflictError("A menu with this slug already exists")
            menu.slug = slug
        changes.pop("slug", None)
        for key, value in changes.items():
            setattr(menu, key, value)
        menu.updated_at = utcnow()
        return self.repo.save(menu)

    def delete(self, menu_id: int) -> None:
        menu = self.get(menu_id)
        items = self.repo.items(menu.id, include_inactive=True)
        # children first so parent references never dangle
        for item in sorted(items, key=lambda i: i.parent_id is None):
            self.session.delete(item)
        self.session.delete(menu)
        self.session.commit()

    # -- items ------------------------------------------------------------

    def _item(self, menu_id: int, item_id: int) -> models.MenuItem:
        item = self.repo.get_item(item_id)
        if not item or item.menu_id != menu_id:
            raise NotFoundError("Menu item not found")
        return item

    def _check_parent(self, menu_id: int, parent_id: Optional[int], item_id: Optional[int] = None) -> None:
        if parent_id is None:
            return
        parent = self.repo.get_item(parent_id)
        if not parent or parent.menu_id != menu_id:
            raise BadRequestError("Parent item must belong to the same menu")
        # walk up from the new parent; meeting the item itself means a cycle
        seen = set()
        node = parent
        while node is not None and node.id not in seen:
            if item_id is not None and node.id == item_id:
                raise BadRequestError("A menu item cannot be its own ancestor")
            seen.add(node.id)
            node = self.repo.get_item(node.parent_id) if node.parent_id else None

    def add_item(self, menu_id: int, data: dict) -> models.MenuItem:
        menu = self.get(menu_id)
        data = dict(data)
        self._check_parent(menu.id, data.get("parent_id"))
        if data.get("order_index") is None:
            data["order_index"] = self.repo.next_item_index(menu.id, data.get("parent_id"))
        return self.repo.save(models.MenuItem(menu_id=menu.id, **data))

    def update_item(self, menu_id: int, item_id: int, changes: dict) -> models.MenuItem:
        item = self._item(menu_id, item_id)
        if "parent_id" in changes:
            self._check_parent(menu_id, changes["parent_id"], item.id)
        for key, value in changes.items():
            setattr(item, key, value)
        item.updated_at = utcnow()
        return self.repo.save(item)

    def delete_item(self, menu_id: int, item_id: int) -> int:
        """Delete an item and its descendants; returns how many rows went."""
        item = self._item(menu_id, item_id)
        items = self.repo.items(menu_id, include_inactive=True)
        children = {}
        for i in items:
            children.setdefault(i.parent_id, []).append(i)
        doomed = []
        stack = [item]
        while stack:
            node = stack.pop()
            doomed.append(node)
            stack.extend(children.get(node.id, []))
        for node in reversed(doomed):
            self.session.delete(node)
        self.session.commit()
        return len(doomed)

    def reorder(self, menu_id: int, item_ids: List[int]) -> list:
        menu = self.get(menu_id)
        items = {i.id: i for i in self.repo.items(menu.id, include_inactive=True)}
        foreign = [i for i in item_ids if i not in items]
        if foreign:
            raise BadRequestError(f"Items do not belong to this menu: {foreign}")
        for position, item_id in enumerate(item_ids):
            items[item_id].order_index = position
            items[item_id].updated_at = utcnow()
            self.session.add(items[item_id])
        self.session.commit()
        return self.build_tree(self.repo.items(menu.id, include_inactive=True))


class ContentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ContentBlockRepository(session)

    def by_kind(self, kind: models.ContentKind, active_only: bool = True) -> list:
        return [b.model_dump() for b in self.repo.by_kind(kind, active_only)]

    def create(self, data: dict) -> models.ContentBlock:
        data = dict(data)
        if data.get("order_index") is None:
            data["order_index"] = len(self.repo.by_kind(data["kind"], active_only=False))
        return self.repo.save(models.ContentBlock(**data))

    def _get(self, block_id: int) -> models.ContentBlock:
        block = self.repo.get(block_id)
        if not block:
            raise NotFoundError("Content block not found")
        return block

    def update(self, block_id: int, changes: dict) -> models.ContentBlock:
        block = self._get(block_id)
        for key, value in changes.items():
            setattr(block, key, value)
        block.updated_at = utcnow()
        return self.repo.save(block)

    def delete(self, block_id: int) -> None:
        self.repo.delete(self._get(block_id))

    def homepage(self) -> dict:
        out = {name: self.by_kind(kind) for name, kind in HOMEPAGE_KINDS.items()}
        out["featured_courses"] = [course_summary(c) for c in repositories.CourseRepository(self.session).featured(6)]
        out["featured_tests"] = [test_summary(t) for t in repositories.TestRepository(self.session).featured(6)]
        return out


class BlogService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.BlogRepository(session)

    def list(self, page: int, limit: int, category: Optional[str] = None, search: Optional[str] = None,
             published_only: bool = True) -> dict:
        posts, total = self.repo.search(page, limit, published_only, category, search)
        return {
            "posts": [p.model_dump(exclude={"content"}) for p in posts],
            "pagination": pagination_block(page, limit, total),
        }

    def categories(self) -> list:
        return self.repo.categories()

    def get(self, slug: str, include_drafts: bool = False) -> models.BlogPost:
        post = self.repo.get_by_slug(slug)
        if not post or (not post.is_published and not include_drafts):
            raise NotFoundError("Post not found")
        return post

    def record_view(self, slug: str) -> int:
        post = self.get(slug)
        post.views = (post.views or 0) + 1
        return self.repo.save(post).views

    def create(self, author: models.User, data: dict) -> models.BlogPost:
        data = dict(data)
        requested = data.pop("slug", None)
        if requested:
            slug = slugify(requested)
            if self.repo.get_by_slug(slug):
                raise ConflictError("A post with this slug already exists")
        else:
            slug = unique_slug(slugify(data["title"]), lambda s: self.repo.get_by_slug(s) is not None)
        post = models.BlogPost(slug=slug, author_id=author.id, **data)
        if post.is_published:
            post.published_at = utcnow()
        return self.repo.save(post)

    def _by_id(self, post_id: int) -> models.BlogPost:
        post = self.repo.get(post_id)
        if not post:
            raise NotFoundError("Post not found")
        return post

    def update(self, post_id: int, changes: dict) -> models.BlogPost:
        post = self._by_id(post_id)
        if changes.get("slug"):
            slug = slugify(changes.pop("slug"))
            existing = self.repo.get_by_slug(slug)
            if existing and existing.id != post.id:
                raise ConflictError("A post with this slug already exists")
            post.slug = slug
        changes.pop("slug", None)
        if changes.get("is_published") and not post.is_published:
            post.published_at = utcnow()
        for key, value in changes.items():
            setattr(post, key, value)
        post.updated_at = utcnow()
        return self.repo.save(post)

    def delete(self, post_id: int) -> None:
        self.repo.delete(self._by_id(post_id))


class SettingsService:
    """Runtime site settings stored as `(category, key) -> value` rows."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SettingRepository(session)

    def _grouped(self, rows: List[models.Setting], mask: bool) -> Dict[str, Dict[str, Optional[str]]]:
        out: Dict[str, Dict[str, Optional[str]]] = {}
        for row in rows:
            value = mask_secret(row.value or "") if (mask and row.is_secret) else row.value
            out.setdefault(row.category, {})[row.key] = value
        return out

    def admin_settings(self) -> dict:
        return self._grouped(self.repo.by_category(), mask=True)

    def update(self, changes: Dict[str, Dict[str, Optional[str]]]) -> dict:
        """Upsert values; a secret sent back in its masked form is left untouched."""
        for category, values in changes.items():
            for key, value in values.items():
                row = self.repo.get_value(category, key)
                secret = _is_secret_key(key)
                if row and row.is_secret and value == mask_secret(row.value or ""):
                    continue
                if row is None:
                    row = models.Setting(category=category, key=key, is_secret=secret)
                row.value = value
                row.updated_at = utcnow()
                self.session.add(row)
        self.session.commit()
        logger.info("settings_updated categories=%s", sorted(changes))
        return self.admin_settings()

    def payment_settings(self) -> dict:
        """Gateway credentials: stored settings first, environment as fallback."""
        cfg = gateway_config()
        stored = {row.key: row.value for row in self.repo.by_category("payment")}
        for key in cfg:
            if stored.get(key):
                cfg[key] = stored[key]
        stripe_ready = bool(cfg["stripe_secret_key"])
        razorpay_ready = bool(cfg["razorpay_key_id"] and cfg["razorpay_key_secret"])
        stripe_flag = stored.get("stripe_enabled")
        razorpay_flag = stored.get("razorpay_enabled")
        cfg["stripe_enabled"] = stripe_ready and (stripe_flag is None or stripe_flag.lower() in _TRUE)
        cfg["razorpay_enabled"] = razorpay_ready and (razorpay_flag is None or razorpay_flag.lower() in _TRUE)
        cfg["default_currency"] = (stored.get("default_currency") or settings.DEFAULT_CURRENCY).upper()
        return cfg

    def public_settings(self) -> dict:
        rows = [r for r in self.repo.by_category() if r.category in PUBLIC_CATEGORIES and not r.is_secret]
        out = self._grouped(rows, mask=False)
        pay = self.payment_settings()
        out["payment"] = {
            "default_currency": pay["default_currency"],
            "stripe": {"enabled": pay["stripe_enabled"],
                       "publishable_key": pay["stripe_publishable_key"] if pay["stripe_enabled"] else None},
            "razorpay": {"enabled": pay["razorpay_enabled"],
                         "key_id": pay["razorpay_key_id"] if pay["razorpay_enabled"] else None},
        }
        return out


class MediaService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.MediaRepository(session)

    def upload(self, user: models.User, payload: bytes, filename: str, content_type: Optional[str]) -> models.MediaFile:
        kind = uploads.sniff_upload_kind(payload, filename, content_type)
        stored_name = uploads.store_media(payload, filename)
        media = self.repo.save(models.MediaFile(
            filename=filename, stored_name=stored_name, content_type=content_type,
            kind=kind, size=len(payload), uploaded_by=user.id,
        ))
        logger.info("media_uploaded media_id=%s kind=%s size=%s", media.id, kind, media.size)
        return media

    def list(self, page: int, limit: int, kind: Optional[str] = None) -> dict:
        items, total = self.repo.search(page, limit, kind)
        return {
            "files": [{**m.model_dump(), "url": f"/media/{m.stored_name}"} for m in items],
            "pagination": pagination_block(page, limit, total),
        }

    def delete(self, media_id: int) -> None:
        media = self.repo.get(media_id)
        if not media:
            raise NotFoundError("Media file not found")
        uploads.remove_media(media.stored_name)
        self.repo.delete(media)


class InquiryService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.InquiryRepository(session)

    def create(self, data: dict) -> models.Inquiry:
        inquiry = self.repo.save(models.Inquiry(**data))
        logger.info("inquiry_received inquiry_id=%s kind=%s", inquiry.id, inquiry.kind.value)
        return inquiry

    def list(self, page: int, limit: int, status: Optional[models.InquiryStatus] = None,
             kind: Optional[models.InquiryKind] = None) -> dict:
        items, total = self.repo.search(page, limit, status, kind)
        return {"inquiries": [i.model_dump() for i in items], "pagination": pagination_block(page, limit, total)}

    def _get(self, inquiry_id: int) -> models.Inquiry:
        inquiry = self.repo.get(inquiry_id)
        if not inquiry:
            raise NotFoundError("Inquiry not found")
        return inquiry

    def update(self, inquiry_id: int, changes: dict) -> models.Inquiry:
        inquiry = self._get(inquiry_id)
        for key, value in changes.items():
            setattr(inquiry, key, value)
        inquiry.updated_at = utcnow()
        return self.repo.save(inquiry)

    def delete(self, inquiry_id: int) -> None:
        self.repo.delete(self._get(inquiry_id))
