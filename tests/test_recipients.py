"""Unit tests for recipient selection rules."""

import uuid

from src.models.enums import AssignmentRole, InterventionAction
from src.modules.interventions.constants import AUDIENCE
from src.modules.notifications.recipients import (
    Assignee,
    Recipient,
    conversation_recipients,
    intervention_recipients,
)


def _assignee(role: AssignmentRole, primary: bool = False, user_id: uuid.UUID | None = None) -> Assignee:
    return Assignee(
        user_id=user_id or uuid.uuid4(),
        role=role,
        is_primary=primary,
        name=f"{role.value} user",
        email=f"{role.value}@example.com",
    )


class TestInterventionRecipients:
    def test_completed_work_reaches_managers_and_tenant(self):
        primary = _assignee(AssignmentRole.MANAGER, primary=True)
        secondary = _assignee(AssignmentRole.MANAGER)
        provider = _assignee(AssignmentRole.PROVIDER, primary=True)
        tenant = _assignee(AssignmentRole.TENANT, primary=True)

        recipients = intervention_recipients(
            [primary, secondary, provider, tenant],
            AUDIENCE[InterventionAction.COMPLETE],
            provider.user_id,
        )

        by_user = {r.user_id: r for r in recipients}
        assert set(by_user) == {primary.user_id, secondary.user_id, tenant.user_id}
        assert by_user[primary.user_id].is_personal is True
        assert by_user[secondary.user_id].is_personal is False
        assert by_user[tenant.user_id].is_personal is True

    def test_actor_is_never_a_recipient(self):
        manager = _assignee(AssignmentRole.MANAGER, primary=True)
        others = [_assignee(AssignmentRole.PROVIDER), _assignee(AssignmentRole.TENANT)]
        for action, audience in AUDIENCE.items():
            recipients = intervention_recipients([manager, *others], audience, manager.user_id)
            assert manager.user_id not in {r.user_id for r in recipients}, action

    def test_audience_filters_roles(self):
        provider = _assignee(AssignmentRole.PROVIDER)
        tenant = _assignee(AssignmentRole.TENANT)
        recipients = intervention_recipients(
            [provider, tenant], AUDIENCE[InterventionAction.APPROVE], None
        )
        assert [r.user_id for r in recipients] == [tenant.user_id]

    def test_user_with_two_roles_is_deduplicated_and_stays_personal(self):
        user_id = uuid.uuid4()
        as_manager = _assignee(AssignmentRole.MANAGER, primary=False, user_id=user_id)
        as_provider = _assignee(AssignmentRole.PROVIDER, user_id=user_id)

        recipients = intervention_recipients(
            [as_manager, as_provider], AUDIENCE[InterventionAction.SCHEDULE], None
        )

        assert len(recipients) == 1
        assert recipients[0].is_personal is True
        assert recipients[0].role == AssignmentRole.MANAGER.value

    def test_providers_are_always_personal(self):
        provider = _assignee(AssignmentRole.PROVIDER, primary=False)
        recipients = intervention_recipients(
            [provider], AUDIENCE[InterventionAction.REQUEST_QUOTES], None
        )
        assert recipients[0].is_personal is True


class TestConversationRecipients:
    def test_transparency_managers_are_team_wide(self):
        author = Recipient(uuid.uuid4(), "tenant", True, "Author")
        provider = Recipient(uuid.uuid4(), "provider", True, "Provider")
        watcher = Recipient(uuid.uuid4(), "manager", False, "Watcher")

        recipients = conversation_recipients([author, provider], [watcher], author.user_id)

        by_user = {r.user_id: r for r in recipients}
        assert set(by_user) == {provider.user_id, watcher.user_id}
        assert by_user[watcher.user_id].is_personal is False

    def test_participating_manager_stays_personal(self):
        manager_id = uuid.uuid4()
        as_participant = Recipient(manager_id, "manager", True, "Manager")
        as_team_member = Recipient(manager_id, "manager", False, "Manager")

        recipients = conversation_recipients([as_participant], [as_team_member], None)

        assert recipients == [Recipient(manager_id, "manager", True, "Manager")]

    def test_author_excluded_even_when_manager(self):
        manager = Recipient(uuid.uuid4(), "manager", False, "Manager")
        recipients = conversation_recipients([], [manager], manager.user_id)
        assert recipients == []
