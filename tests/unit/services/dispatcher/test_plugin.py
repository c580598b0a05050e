"""
Unit tests for services.dispatcher.plugin module.

Tests:
- FilterDecision serialization
- PushNotifyFilter accept / reject modes
- Decisions never wait for dispatch
"""

from unittest.mock import MagicMock

from pushbrotr.services.dispatcher import (
    Dispatcher,
    FilterAction,
    FilterDecision,
    PushNotifyFilter,
)


class TestFilterDecision:
    def test_to_dict(self):
        decision = FilterDecision("e1", FilterAction.ACCEPT)
        assert decision.to_dict() == {"id": "e1", "action": "accept", "msg": ""}

    def test_reject_to_dict(self):
        decision = FilterDecision("e1", FilterAction.REJECT, "nope")
        assert decision.to_dict() == {"id": "e1", "action": "reject", "msg": "nope"}


class TestPushNotifyFilter:
    def test_accept_submits(self, make_note):
        dispatcher = MagicMock()
        note = make_note()
        decision = PushNotifyFilter(dispatcher).filter_note(note)
        dispatcher.submit.assert_called_once_with(note)
        assert decision.action is FilterAction.ACCEPT
        assert decision.event_id == note.id

    def test_reject_still_submits(self, make_note):
        dispatcher = MagicMock()
        decision = PushNotifyFilter(dispatcher, reject=True).filter_note(make_note())
        dispatcher.submit.assert_called_once()
        assert decision.action is FilterAction.REJECT
        assert decision.message == PushNotifyFilter.REJECT_MESSAGE

    def test_decision_for_does_not_submit(self):
        dispatcher = MagicMock()
        decision = PushNotifyFilter(dispatcher).decision_for("e9")
        dispatcher.submit.assert_not_called()
        assert decision == FilterDecision("e9", FilterAction.ACCEPT)

    async def test_decision_independent_of_dispatch(
        self, fake_store, fake_mute_policy, fake_gateway, make_note
    ):
        fake_store.initialized = False
        dispatcher = Dispatcher(fake_store, fake_mute_policy, fake_gateway)
        plugin = PushNotifyFilter(dispatcher)

        decision = plugin.filter_note(make_note(tags=[["p", "bob"]]))
        await dispatcher.drain(timeout=1)

        assert decision.action is FilterAction.ACCEPT
        assert fake_store.writes == 0
