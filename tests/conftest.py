from __future__ import annotations

import pytest

from config.settings import Settings
from orchestration.catalog import TargetCatalog
from orchestration.orchestrator import Orchestrator
from tests.fakes import FakeBrowser


@pytest.fixture
def cfg(tmp_path) -> Settings:
    return Settings(
        poll_interval_seconds=0.01,
        fanout_timeout_seconds=0.4,
        sequential_timeout_seconds=1.5,
        item_delay_min_seconds=0.0,
        item_delay_max_seconds=0.0,
        settle_delay_seconds=0.0,
        rpc_timeout_seconds=0.5,
        checkpoint_dir=str(tmp_path / "checkpoints"),
        log_file=None,
    )


@pytest.fixture
def catalog() -> TargetCatalog:
    return TargetCatalog.from_dict(
        {
            "SiteX": {
                "base_url": "https://x.example",
                "search_url": "https://x.example/search?q={query}",
                "extraction": {"price": ".price", "title": ".title"},
            },
            "SiteY": {
                "base_url": "https://y.example",
                "search_url": "https://y.example/find?term={query}&cat={category_id}",
                "category_ids": {"laptops": "42"},
                "extraction": {"price": ".cost"},
            },
        }
    )


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
async def orchestrator(browser, cfg, catalog):
    orch = Orchestrator(browser, catalog=catalog, cfg=cfg)
    yield orch
    await orch.shutdown()
