from __future__ import annotations

import asyncio

from textual.widgets import DataTable

from oneach.dashboard import Dashboard, StatusBar
from oneach.operations import RunCommand
from oneach.scope import ScopeSpec


def test_dashboard_shows_results(harness) -> None:
    harness.transport.fail_nodes = {"cn1"}
    dispatcher = harness.dispatcher(ScopeSpec(all_targets=True), RunCommand("uptime"))
    app = Dashboard(dispatcher)

    async def go():
        async with app.run_test() as pilot:
            await app.workers.wait_for_complete()
            await pilot.pause()
            table = app.query_one("#results", DataTable)
            status = app.query_one("#status-bar", StatusBar)
            return table.row_count, status.completed, status.failed, status.total

    rows, completed, failed, total = asyncio.run(go())
    assert (rows, completed, failed, total) == (8, 8, 3, 8)
    assert app.error is None


def test_dashboard_reports_setup_errors(harness) -> None:
    dispatcher = harness.dispatcher(ScopeSpec.build(services=["moray"]), RunCommand("uptime"))
    app = Dashboard(dispatcher)

    async def go():
        async with app.run_test() as pilot:
            await app.workers.wait_for_complete()
            await pilot.pause()
            return app.query_one("#status-bar", StatusBar).stage

    assert asyncio.run(go()) == "error: no matching targets"
    assert str(app.error) == "no matching targets"
