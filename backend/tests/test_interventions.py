"""
Tests for intervention generation, idempotency and acknowledgment.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from errors import NotFoundError
from models.intervention import Intervention
from models.notification import Notification
from services.intervention_service import (
    CRISIS_ACTIONS,
    DEFAULT_ACTIONS,
    InterventionService,
    build_prompt,
    static_message,
    suggested_actions,
)
from services.notification_service import NotificationDispatcher, build_push_payload
from services.risk_scorer import score_signals
from services.risk_signals import RiskSignal, Severity
from fakes import ScriptedProvider, failing, make_chain, text_reply


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[int, bool]] = []

    async def notify_intervention(self, db, intervention, is_critical=False):
        if self.fail:
            raise RuntimeError("push service down")
        self.sent.append((intervention.id, is_critical))
        return True


def assessment(*specs):
    signals = [RiskSignal(t, sev, t.replace("_", " "), w) for t, sev, w in specs]
    return score_signals(signals)


URGES_AND_SLEEP = (("high_urges", Severity.HIGH, 0.5), ("poor_sleep", Severity.MEDIUM, 0.3))


def open_row(db, user_id=1, created_at=None):
    row = Intervention(user_id=user_id, trigger_type="poor_sleep", risk_score=0.5, message="hi", suggested_actions="[]")
    if created_at is not None:
        row.created_at = created_at
    db.add(row)
    db.commit()
    return row


class TestHelpers:
    def test_suggested_actions_are_deduplicated_in_order(self):
        actions = suggested_actions(["recent_relapse", "multiple_relapses", "high_urges", "poor_sleep"])
        assert actions == ["talk_to_coach", "review_triggers", "try_coping_tool", "try_meditation"]

    def test_unknown_signals_get_defaults(self):
        assert suggested_actions(["milestone_approaching"]) == DEFAULT_ACTIONS
        assert suggested_actions([]) == DEFAULT_ACTIONS

    def test_static_message_uses_name(self):
        assert static_message("River").startswith("Hey River")
        assert static_message(None).startswith("Hey Friend")

    def test_prompt_is_framed_by_primary_signal(self):
        messages = build_prompt(assessment(("recent_relapse", Severity.HIGH, 0.35)), "River")
        assert "setbacks are part of recovery" in messages[0]["content"]
        assert "River" in messages[0]["content"]

    def test_critical_prompt_adds_intensity(self):
        messages = build_prompt(assessment(("multiple_relapses", Severity.CRITICAL, 0.5)), "River")
        assert "critical situation" in messages[0]["content"]


class TestGenerate:
    def test_creates_intervention_and_notifies(self, db, user):
        notifier = RecordingNotifier()
        provider = ScriptedProvider("primary", [text_reply("Hi River, how about a short walk?")])
        service = InterventionService(db, chain=make_chain(provider), notifier=notifier)

        intervention, existing = asyncio.run(service.generate(user.id, assessment(*URGES_AND_SLEEP), "River"))

        assert existing is False
        assert intervention.trigger_type == "high_urges"
        assert intervention.risk_score == pytest.approx(0.8)
        assert intervention.message == "Hi River, how about a short walk?"
        assert intervention.actions == ["try_coping_tool", "try_meditation"]
        assert intervention.model_used == "primary-model"
        assert notifier.sent == [(intervention.id, True)]

    def test_second_generate_returns_same_intervention(self, db, user):
        provider = ScriptedProvider("primary", [text_reply("first"), text_reply("second")])
        service = InterventionService(db, chain=make_chain(provider), notifier=RecordingNotifier())

        first, _ = asyncio.run(service.generate(user.id, assessment(*URGES_AND_SLEEP)))
        second, existing = asyncio.run(service.generate(user.id, assessment(*URGES_AND_SLEEP)))

        assert existing is True
        assert second.id == first.id
        assert second.message == "first"
        assert len(provider.calls) == 1
        assert db.query(Intervention).count() == 1

    def test_all_providers_failing_uses_static_template(self, db, user):
        provider = ScriptedProvider("primary", [failing("primary")])
        service = InterventionService(db, chain=make_chain(provider), notifier=RecordingNotifier())

        intervention, _ = asyncio.run(service.generate(user.id, assessment(*URGES_AND_SLEEP), "River"))

        assert intervention.message == static_message("River")
        assert intervention.model_used == "fallback-static"

    def test_notification_failure_does_not_fail_generation(self, db, user):
        service = InterventionService(
            db,
            chain=make_chain(ScriptedProvider("primary", [text_reply("hello")])),
            notifier=RecordingNotifier(fail=True),
        )
        intervention, existing = asyncio.run(service.generate(user.id, assessment(*URGES_AND_SLEEP)))
        assert intervention.id is not None
        assert existing is False

    def test_losing_the_race_returns_the_winner(self, db, user):
        """An insert blocked by the open-intervention index hands back the row that won."""
        winner = open_row(db)

        class RacingService(InterventionService):
            checked = False

            def get_open(self, user_id):
                if not self.checked:
                    self.checked = True
                    return None
                return super().get_open(user_id)

        service = RacingService(
            db,
            chain=make_chain(ScriptedProvider("primary", [text_reply("late")])),
            notifier=RecordingNotifier(),
        )
        intervention, existing = asyncio.run(service.generate(user.id, assessment(*URGES_AND_SLEEP)))

        assert existing is True
        assert intervention.id == winner.id
        assert db.query(Intervention).count() == 1
        assert service.notifier.sent == []

    def test_database_rejects_second_open_row(self, db, user):
        open_row(db)
        with pytest.raises(IntegrityError):
            open_row(db)
        db.rollback()

    def test_crisis_intervention(self, db, user):
        notifier = RecordingNotifier()
        service = InterventionService(db, chain=make_chain(), notifier=notifier)

        intervention, existing = asyncio.run(service.create_crisis_intervention(user.id, "self_harm", "critical"))

        assert existing is False
        assert intervention.risk_score == 1.0
        assert intervention.actions == CRISIS_ACTIONS
        assert notifier.sent == [(intervention.id, True)]

    def test_crisis_with_open_intervention_returns_existing(self, db, user):
        row = open_row(db)
        service = InterventionService(db, chain=make_chain(), notifier=RecordingNotifier())
        intervention, existing = asyncio.run(service.create_crisis_intervention(user.id, "self_harm", "high"))
        assert existing is True
        assert intervention.id == row.id


class TestAcknowledge:
    def test_acknowledge_records_feedback(self, db, user):
        row = open_row(db)
        service = InterventionService(db, chain=make_chain())

        acknowledged = service.acknowledge(user.id, row.id, action_taken="talk_to_coach", was_helpful=True)

        assert acknowledged.was_acknowledged is True
        assert acknowledged.acknowledged_at is not None
        assert acknowledged.action_taken == "talk_to_coach"
        assert acknowledged.was_helpful is True
        assert service.get_open(user.id) is None

    def test_acknowledge_is_terminal(self, db, user):
        row = open_row(db)
        service = InterventionService(db, chain=make_chain())
        service.acknowledge(user.id, row.id, action_taken="talk_to_coach", was_helpful=True)

        again = service.acknowledge(user.id, row.id, action_taken="do_check_in", was_helpful=False)

        assert again.action_taken == "talk_to_coach"
        assert again.was_helpful is True

    def test_dismiss(self, db, user):
        row = open_row(db)
        dismissed = InterventionService(db, chain=make_chain()).dismiss(user.id, row.id)
        assert dismissed.was_acknowledged is True
        assert dismissed.action_taken == "dismissed"

    def test_other_users_intervention_is_not_found(self, db, user):
        row = open_row(db)
        with pytest.raises(NotFoundError):
            InterventionService(db, chain=make_chain()).acknowledge(99, row.id)

    def test_acknowledged_allows_a_new_open_row(self, db, user):
        row = open_row(db)
        InterventionService(db, chain=make_chain()).acknowledge(user.id, row.id)
        assert open_row(db).id != row.id


class TestExpiry:
    def test_stale_interventions_expire(self, db, user):
        old = open_row(db, created_at=datetime.now(timezone.utc) - timedelta(hours=30))
        service = InterventionService(db, chain=make_chain())

        assert service.expire_stale(user.id) == 1

        db.refresh(old)
        assert old.was_acknowledged is True
        assert old.action_taken == "expired"

    def test_fresh_interventions_stay_open(self, db, user):
        open_row(db)
        service = InterventionService(db, chain=make_chain())
        assert service.expire_stale(user.id) == 0
        assert service.get_open(user.id) is not None


class TestNotificationHandoff:
    def test_payload(self):
        intervention = Intervention(id=7, user_id=1, risk_score=0.8, message="x" * 150)
        payload = build_push_payload(intervention, is_critical=True)

        assert payload["title"] == "We're Here for You"
        assert payload["body"] == "x" * 100 + "..."
        assert payload["url"] == "/ai-insights"
        assert payload["data"] == {
            "type": "proactive_intervention",
            "intervention_id": 7,
            "risk_score": 0.8,
            "is_critical": True,
        }

    def test_routine_title(self):
        intervention = Intervention(id=7, user_id=1, risk_score=0.4, message="hello")
        assert build_push_payload(intervention)["title"] == "Recovery Check-in"

    def test_in_app_row_written_without_dispatcher(self, db, user):
        row = open_row(db)
        sent = asyncio.run(NotificationDispatcher(dispatch_url="").notify_intervention(db, row))

        assert sent is False
        notification = db.query(Notification).one()
        assert notification.reference_id == row.id
        assert notification.action_url == "/ai-insights"

    def test_unreachable_dispatcher_is_swallowed(self, db, user):
        row = open_row(db)
        dispatcher = NotificationDispatcher(dispatch_url="http://127.0.0.1:9/push")
        assert asyncio.run(dispatcher.notify_intervention(db, row)) is False
