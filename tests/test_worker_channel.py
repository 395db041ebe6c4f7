from __future__ import annotations

import pytest

from clients.browser import BrowserHostError
from clients.worker_channel import WorkerChannel
from models.messages import CategoryHints
from tests.fakes import FakeBrowser


async def _replying(reply):
    async def worker(browser, tab_id, message):
        return reply

    browser = FakeBrowser(worker)
    tab_id = await browser.create_tab("about:blank")
    return browser, WorkerChannel(browser), tab_id


async def test_start_work_envelope():
    browser, channel, tab_id = await _replying({"received": True})

    assert await channel.start_work(tab_id, "s1", "CEX", {"price": ".p"}, CategoryHints(category="tablets"))

    sent_tab, message = browser.sent[0]
    assert sent_tab == tab_id
    assert message == {
        "action": "start-work",
        "data": {
            "sessionId": "s1",
            "targetName": "CEX",
            "extractionConfig": {"price": ".p"},
            "categoryHints": {"category": "tablets", "attributes": {}},
        },
    }


async def test_error_reply_raises():
    _, channel, tab_id = await _replying({"error": "selector missing"})

    with pytest.raises(BrowserHostError, match="selector missing"):
        await channel.submit_item(tab_id, "s1", "search", "A")


async def test_empty_record_means_nothing_identified():
    _, channel, tab_id = await _replying({"record": {}})
    assert await channel.extract_record(tab_id, "s1", "A") is None


async def test_abort_work_to_closed_tab_is_quiet():
    browser, channel, tab_id = await _replying({"aborted": True})
    browser.user_close(tab_id)

    assert await channel.abort_work(tab_id, "s1") is False


async def test_non_dict_reply_is_treated_as_empty():
    _, channel, tab_id = await _replying(None)
    assert await channel.read_listed_flag(tab_id, "s1") is False
