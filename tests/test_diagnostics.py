"""Tests for the deployment diagnostics runner."""

from booking_assistant.diagnostics import FAIL, PASS, WARN, CheckResult, Diagnostics, format_report

from conftest import make_settings


class TestDiagnostics:
    async def test_unconfigured_deployment_passes_with_warnings(self):
        diagnostics = Diagnostics(make_settings())
        results = await diagnostics.run()

        statuses = {r.check: r.status for r in results}
        assert statuses["CONFIG"] in (PASS, WARN)
        assert statuses["EMAIL_CONFIG"] == WARN
        assert statuses["VOICE_BOOKING"] == PASS
        assert statuses["VOICE_APPOINTMENTS"] == PASS
        assert statuses["VOICE_CANCELLATION"] == PASS
        assert statuses["CONVERSATION_BOOKING"] == PASS
        assert statuses["CONVERSATION_AVAILABILITY"] == PASS
        assert not diagnostics.failed

    async def test_invalid_configuration_stops_early(self):
        diagnostics = Diagnostics(make_settings(sync_max_attempts=0))
        results = await diagnostics.run()

        assert [r.status for r in results] == [FAIL]
        assert diagnostics.failed

    async def test_skip_smoke(self):
        results = await Diagnostics(make_settings()).run(skip_smoke=True)
        assert not any(r.check.startswith("VOICE_") for r in results)


def test_report_lists_failures_first():
    report = format_report([
        CheckResult("A", PASS, "fine"),
        CheckResult("B", FAIL, "broken"),
    ])
    assert report.index("FAIL (1)") < report.index("PASS (1)")
    assert report.rstrip().endswith("1 passed, 0 warnings, 1 failed")
