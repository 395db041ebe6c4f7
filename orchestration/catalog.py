"""Competitor search targets: where to send a worker and what to hand it."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote, quote_plus

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from config.settings import settings
from models.messages import CategoryHints
from utils.helpers import normalize_key


class SearchTarget(BaseModel):
    """One competitor site. ``extraction`` is opaque to the orchestrator."""

    name: str
    base_url: str
    search_url: str = Field(..., description="Template with {query} and optionally {category_id}")
    default_category_id: str = "all"
    category_ids: Dict[str, str] = Field(default_factory=dict)
    category_params: Dict[str, str] = Field(default_factory=dict)
    subcategory_params: Dict[str, str] = Field(default_factory=dict)
    attribute_params: Dict[str, str] = Field(default_factory=dict)
    extraction: Dict[str, Any] = Field(default_factory=dict)

    def build_url(self, query: str, hints: Optional[CategoryHints] = None) -> str:
        hints = hints or CategoryHints()
        category = normalize_key(hints.category)
        subcategory = normalize_key(hints.subcategory)

        url = self.search_url.format(
            query=quote(query, safe=""),
            category_id=self.category_ids.get(category, self.default_category_id),
        )
        if category in self.category_params:
            url += self.category_params[category]
            # Attribute filters only make sense once a category narrowed the search.
            for attr, template in self.attribute_params.items():
                value = hints.attributes.get(attr)
                if value:
                    url += template.format(value=quote_plus(str(value)))
        if subcategory in self.subcategory_params:
            url += self.subcategory_params[subcategory]
        return url


class TargetCatalog:
    """Targets keyed by name, loaded from a JSON file."""

    def __init__(self, targets: Optional[Dict[str, SearchTarget]] = None) -> None:
        self._targets: Dict[str, SearchTarget] = dict(targets or {})

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "TargetCatalog":
        path_obj = Path(path or settings.targets_file)
        if not path_obj.exists():
            logger.warning(f"Target catalog {path_obj} not found; no fan-out targets available.")
            return cls()
        with open(path_obj, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: Dict[str, Dict[str, Any]]) -> "TargetCatalog":
        targets: Dict[str, SearchTarget] = {}
        for name, entry in raw.items():
            try:
                targets[name] = SearchTarget(name=name, **entry)
            except ValidationError as exc:
                logger.warning(f"Skipping invalid target '{name}': {exc}")
        logger.info(f"Loaded {len(targets)} search target(s): {', '.join(targets)}")
        return cls(targets)

    def get(self, name: str) -> Optional[SearchTarget]:
        return self._targets.get(name)

    def names(self) -> List[str]:
        return list(self._targets)

    def __len__(self) -> int:
        return len(self._targets)
