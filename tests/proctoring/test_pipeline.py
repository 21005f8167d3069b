from __future__ import annotations

import asyncio

from prometheus_client import REGISTRY

from proctorsync.models.alert import SessionContext, ViolationEvent, ViolationType
from proctorsync.models.progress import ProgressPatch
from proctorsync.proctoring.clipboard import ClipboardGuard
from proctorsync.proctoring.cooldown import CooldownFilter
from proctorsync.proctoring.pipeline import ViolationPipeline
from proctorsync.proctoring.tab_visibility import TabVisibilityTracker

CTX = SessionContext(user_id="u1", course_id="c1", video_id="v1")


def _alerts(result: str) -> float:
    value = REGISTRY.get_sample_value("alerts_total", {"result": result})
    return value if value is not None else 0.0


def _event(kind: ViolationType, at: float) -> ViolationEvent:
    return ViolationEvent(type=kind, message=kind.value, context=CTX, occurred_at=at)


def test_counters_increment_even_when_alert_is_suppressed(store, sink, remote) -> None:
    store.save_video_progress("u1", "c1", "v1", ProgressPatch(total_duration=100))
    before = _alerts("suppressed")

    async def scenario() -> ViolationPipeline:
        pipeline = ViolationPipeline(store, sink, CooldownFilter(cooldown=10))
        assert pipeline.submit(_event(ViolationType.TAB_SWITCH_DETECTED, 0)) is True
        assert pipeline.submit(_event(ViolationType.TAB_SWITCH_DETECTED, 3)) is False
        await pipeline.drain()
        return pipeline

    pipeline = asyncio.run(scenario())
    assert (pipeline.admitted, pipeline.suppressed) == (1, 1)
    assert _alerts("suppressed") - before == 1
    assert store.get_video_progress("u1", "c1", "v1").violations.tab_switches == 2
    assert len(asyncio.run(remote.alerts_for_user("u1"))) == 1


def test_face_missing_counts_as_an_auto_pause(store, sink) -> None:
    store.save_video_progress("u1", "c1", "v1", ProgressPatch(total_duration=100))

    async def scenario() -> None:
        pipeline = ViolationPipeline(store, sink, CooldownFilter(cooldown=10))
        pipeline.submit(_event(ViolationType.FACE_MISSING, 0))
        pipeline.submit(_event(ViolationType.COPY_ATTEMPTED, 0))
        await pipeline.drain()

    asyncio.run(scenario())
    violations = store.get_video_progress("u1", "c1", "v1").violations
    assert violations.face_missing_events == 1
    assert violations.auto_pauses == 1
    assert violations.tab_switches == 0


def test_alert_write_failure_is_contained(store, sink, remote) -> None:
    remote.fail_alerts = True
    before = _alerts("failed")

    async def scenario() -> int:
        pipeline = ViolationPipeline(store, sink, CooldownFilter(cooldown=10))
        pipeline.submit(_event(ViolationType.PASTE_ATTEMPTED, 0))
        await pipeline.drain()
        return pipeline.pending_writes

    assert asyncio.run(scenario()) == 0
    assert _alerts("failed") - before == 1


def test_detectors_feed_the_pipeline(store, sink, remote, clock) -> None:
    store.save_video_progress("u1", "c1", "v1", ProgressPatch(total_duration=100))

    async def scenario() -> None:
        pipeline = ViolationPipeline(store, sink, CooldownFilter(cooldown=10))
        tabs = TabVisibilityTracker(CTX, pipeline.submit, clock=clock, max_warnings=3)
        clipboard = ClipboardGuard(CTX, pipeline.submit, clock=clock)

        tabs.visibility_changed(True)
        tabs.visibility_changed(False)
        clipboard.copy_attempted()
        clipboard.copy_attempted()  # same window, no second alert
        clock.advance(11)
        clipboard.paste_attempted()
        await pipeline.drain()
        assert clipboard.attempts == 3

    asyncio.run(scenario())
    alerts = asyncio.run(remote.alerts_for_user("u1"))
    assert sorted(a["type"] for a in alerts) == [
        "copy_attempted",
        "paste_attempted",
        "tab_focus_restored",
        "tab_switch_detected",
    ]
    assert alerts[0]["type"] == "paste_attempted"
    assert store.get_video_progress("u1", "c1", "v1").violations.tab_switches == 1
