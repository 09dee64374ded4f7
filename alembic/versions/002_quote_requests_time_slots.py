"""Quote requests and time slot negotiation

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

Alters: interventions (quote_deadline, quote_notes), interventionaction (+replan)
Creates: intervention_time_slots, time_slot_responses
Enums: timeslotstatus, slotresponsetype
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── 1. Quote collection on interventions ──────────────────────────────
    op.execute("""
        ALTER TABLE interventions
          ADD COLUMN quote_deadline TIMESTAMPTZ,
          ADD COLUMN quote_notes TEXT;
    """)

    # ── 2. Enum types ─────────────────────────────────────────────────────
    op.execute("ALTER TYPE interventionaction ADD VALUE IF NOT EXISTS 'replan' BEFORE 'cancel';")
    op.execute(
        "CREATE TYPE timeslotstatus AS ENUM ('proposed', 'selected', 'rejected', 'cancelled');"
    )
    op.execute(
        "CREATE TYPE slotresponsetype AS ENUM ('accepted', 'rejected', 'counter_proposed');"
    )

    # ── 3. Time slots ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE intervention_time_slots (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            proposed_by UUID REFERENCES users(id) ON DELETE SET NULL,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            status timeslotstatus NOT NULL DEFAULT 'proposed',
            notes TEXT,
            selected_at TIMESTAMPTZ,
            selected_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_time_slots_end_after_start CHECK (end_at > start_at)
        );
    """)
    op.execute(
        "CREATE INDEX ix_intervention_time_slots_intervention_id_status"
        " ON intervention_time_slots (intervention_id, status);"
    )
    # At most one selected slot per intervention
    op.execute(
        "CREATE UNIQUE INDEX uq_time_slots_one_selected ON intervention_time_slots (intervention_id)"
        " WHERE status = 'selected';"
    )

    op.execute("""
        CREATE TABLE time_slot_responses (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            slot_id UUID NOT NULL REFERENCES intervention_time_slots(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            response slotresponsetype NOT NULL,
            comment TEXT,
            counter_slot_id UUID REFERENCES intervention_time_slots(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_time_slot_response_user UNIQUE (slot_id, user_id)
        );
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS time_slot_responses CASCADE;")
    op.execute("DROP TABLE IF EXISTS intervention_time_slots CASCADE;")
    op.execute("DROP TYPE IF EXISTS slotresponsetype;")
    op.execute("DROP TYPE IF EXISTS timeslotstatus;")
    # PostgreSQL cannot drop a single enum value; 'replan' stays on interventionaction
    op.execute("""
        ALTER TABLE interventions
          DROP COLUMN IF EXISTS quote_notes,
          DROP COLUMN IF EXISTS quote_deadline;
    """)
