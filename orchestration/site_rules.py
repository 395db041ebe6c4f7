"""URL classification for the site the sequential workflows run on."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from config.settings import Settings, settings as default_settings
from utils.helpers import match_pattern_for, same_site, url_matches


class PageKind(str, Enum):
    LISTING = "listing"
    DETAIL = "detail"
    LOGIN = "login"
    ROOT = "root"  # site root, only seen mid-redirect
    OTHER = "other"  # on the site but outside the workflow's pages
    OFF_SITE = "off_site"
    BLANK = "blank"


@dataclass(frozen=True)
class SiteRules:
    base_url: str
    search_path: str
    listing_pattern: str
    detail_pattern: str
    login_pattern: str
    allowed_pattern: str

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "SiteRules":
        cfg = cfg or default_settings
        return cls(
            base_url=cfg.site_base_url.rstrip("/"),
            search_path=cfg.site_search_path,
            listing_pattern=cfg.listing_url_pattern,
            detail_pattern=cfg.detail_url_pattern,
            login_pattern=cfg.login_url_pattern,
            allowed_pattern=cfg.allowed_url_pattern,
        )

    @property
    def search_url(self) -> str:
        return f"{self.base_url}{self.search_path}"

    @property
    def tab_match_pattern(self) -> str:
        return match_pattern_for(self.base_url)

    def classify(self, url: str) -> PageKind:
        if not url or url.startswith("about:"):
            return PageKind.BLANK
        if not same_site(url, self.base_url):
            return PageKind.OFF_SITE
        if url_matches(url, self.login_pattern):
            return PageKind.LOGIN
        if url_matches(url, self.detail_pattern):
            return PageKind.DETAIL
        if url_matches(url, self.listing_pattern):
            return PageKind.LISTING
        if urlparse(url).path in ("", "/"):
            return PageKind.ROOT
        return PageKind.OTHER

    def is_allowed(self, url: str) -> bool:
        """Whether a tab running a sequential session may load ``url``."""
        kind = self.classify(url)
        if kind in (PageKind.OFF_SITE, PageKind.OTHER):
            return kind == PageKind.OTHER and url_matches(url, self.allowed_pattern)
        return True
