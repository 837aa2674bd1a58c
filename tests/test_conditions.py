from datetime import timedelta

from origin_ca_issuer.conditions import get_condition, has_condition, set_condition
from origin_ca_issuer.models import Condition, OriginIssuerStatus


class TestSetCondition:

    def test_first_observation_sets_transition_time(self, now):
        status = OriginIssuerStatus()

        set_condition(status, "Ready", "True", "Verified", "ok", now)

        assert status.conditions == [
            Condition(
                type="Ready",
                status="True",
                lastTransitionTime=now,
                reason="Verified",
                message="ok",
            )
        ]

    def test_repeated_identical_call_keeps_transition_time(self, now):
        status = OriginIssuerStatus()
        set_condition(status, "Ready", "False", "NotFound", "missing", now)

        set_condition(status, "Ready", "False", "NotFound", "missing", now + timedelta(minutes=5))

        assert len(status.conditions) == 1
        assert status.conditions[0].lastTransitionTime == now

    def test_same_status_updates_reason_and_message_only(self, now):
        status = OriginIssuerStatus()
        set_condition(status, "Ready", "False", "NotFound", "missing", now)

        set_condition(status, "Ready", "False", "Error", "boom", now + timedelta(hours=1))

        condition = get_condition(status, "Ready")
        assert condition.reason == "Error"
        assert condition.message == "boom"
        assert condition.lastTransitionTime == now

    def test_changed_status_updates_transition_time(self, now):
        status = OriginIssuerStatus()
        later = now + timedelta(minutes=3)
        set_condition(status, "Ready", "False", "NotFound", "missing", now)

        set_condition(status, "Ready", "True", "Verified", "ok", later)

        assert len(status.conditions) == 1
        assert status.conditions[0].status == "True"
        assert status.conditions[0].lastTransitionTime == later

    def test_other_condition_types_are_preserved_in_order(self, now):
        status = OriginIssuerStatus(
            conditions=[
                Condition(type="Approved", status="True", lastTransitionTime=now),
                Condition(type="Ready", status="Unknown", lastTransitionTime=now),
            ]
        )

        set_condition(status, "Ready", "True", "Issued", "done", now + timedelta(seconds=1))

        assert [c.type for c in status.conditions] == ["Approved", "Ready"]
        assert status.conditions[0].status == "True"

    def test_keys_set_by_other_controllers_are_kept(self, now):
        status = OriginIssuerStatus(
            conditions=[
                Condition(
                    type="Ready",
                    status="False",
                    lastTransitionTime=now,
                    extra={"observedGeneration": 3},
                )
            ]
        )

        set_condition(status, "Ready", "True", "Verified", "ok", now + timedelta(seconds=1))

        assert status.conditions[0].to_dict()["observedGeneration"] == 3
        assert status.conditions[0].status == "True"

    def test_transition_time_is_truncated_to_seconds(self, now):
        status = OriginIssuerStatus()

        set_condition(status, "Ready", "True", "Verified", "ok", now.replace(microsecond=123456))

        assert status.conditions[0].lastTransitionTime == now


class TestHasCondition:

    def test_has_condition(self, now):
        status = OriginIssuerStatus()
        set_condition(status, "Ready", "True", "Verified", "ok", now)

        assert has_condition(status, "Ready", "True")
        assert not has_condition(status, "Ready", "False")

    def test_missing_condition(self):
        assert not has_condition(OriginIssuerStatus(), "Ready", "True")
        assert get_condition(OriginIssuerStatus(), "Ready") is None
