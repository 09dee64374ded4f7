"""Initial Lotwise schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: teams, users, interventions, intervention_assignments,
         intervention_transitions, intervention_reports, intervention_documents,
         quotes, conversation_threads, conversation_participants,
         conversation_messages, notifications, push_subscriptions
Enums: userrole, assignmentrole, interventionstatus, interventionaction,
       interventionurgency, reporttype, quotestatus, threadtype,
       notificationtype, notificationpriority
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # ── 1. Enum types ─────────────────────────────────────────────────────
    op.execute("CREATE TYPE userrole AS ENUM ('admin', 'manager', 'provider', 'tenant');")
    op.execute("CREATE TYPE assignmentrole AS ENUM ('manager', 'provider', 'tenant');")
    op.execute("""
        CREATE TYPE interventionstatus AS ENUM (
            'demande', 'rejetee', 'approuvee', 'demande_de_devis', 'planification',
            'planifiee', 'en_cours', 'cloturee_par_prestataire',
            'cloturee_par_locataire', 'cloturee_par_gestionnaire', 'annulee'
        );
    """)
    op.execute("""
        CREATE TYPE interventionaction AS ENUM (
            'approve', 'reject', 'request_quotes', 'start_planning', 'accept_quote',
            'schedule', 'start', 'complete', 'validate', 'contest', 'finalize',
            'reopen', 'cancel'
        );
    """)
    op.execute("CREATE TYPE interventionurgency AS ENUM ('low', 'normal', 'high', 'urgent');")
    op.execute(
        "CREATE TYPE reporttype AS ENUM ('provider_report', 'tenant_report', 'manager_report');"
    )
    op.execute("CREATE TYPE quotestatus AS ENUM ('pending', 'accepted', 'rejected');")
    op.execute(
        "CREATE TYPE threadtype AS ENUM ('group', 'tenant_to_managers', 'provider_to_managers');"
    )
    op.execute("""
        CREATE TYPE notificationtype AS ENUM (
            'intervention', 'status_change', 'assignment', 'document', 'chat',
            'reminder', 'system'
        );
    """)
    op.execute("CREATE TYPE notificationpriority AS ENUM ('low', 'normal', 'high', 'urgent');")

    # ── 2. Teams and users ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE teams (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("""
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            team_id UUID REFERENCES teams(id) ON DELETE SET NULL,
            auth_user_id UUID,
            name VARCHAR(255) NOT NULL,
            email VARCHAR(320),
            role userrole NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_users_auth_user_id UNIQUE (auth_user_id)
        );
    """)
    op.execute("CREATE INDEX ix_users_team_id_role ON users (team_id, role);")

    # ── 3. Interventions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE interventions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            reference VARCHAR(30) NOT NULL,
            title VARCHAR(255) NOT NULL,
            description TEXT NOT NULL,
            intervention_type VARCHAR(50) NOT NULL,
            urgency interventionurgency NOT NULL DEFAULT 'normal',
            status interventionstatus NOT NULL DEFAULT 'demande',
            team_id UUID NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
            lot_id UUID,
            tenant_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            final_cost NUMERIC(12,2),
            selected_quote_id UUID,
            is_contested BOOLEAN NOT NULL DEFAULT false,
            manager_comment TEXT,
            provider_comment TEXT,
            tenant_comment TEXT,
            rejection_reason TEXT,
            cancellation_reason TEXT,
            tenant_satisfaction INTEGER,
            scheduled_date TIMESTAMPTZ,
            started_at TIMESTAMPTZ,
            completed_date TIMESTAMPTZ,
            tenant_validated_date TIMESTAMPTZ,
            finalized_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_interventions_reference UNIQUE (reference),
            CONSTRAINT ck_interventions_satisfaction_range
                CHECK (tenant_satisfaction IS NULL OR tenant_satisfaction BETWEEN 1 AND 5)
        );
    """)
    op.execute("CREATE INDEX ix_interventions_team_id_status ON interventions (team_id, status);")
    op.execute(
        "CREATE INDEX ix_interventions_scheduled_date ON interventions (scheduled_date)"
        " WHERE status = 'planifiee';"
    )

    op.execute("""
        CREATE TABLE intervention_assignments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role assignmentrole NOT NULL,
            is_primary BOOLEAN NOT NULL DEFAULT false,
            assigned_by UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_assignment_user_role UNIQUE (intervention_id, user_id, role)
        );
    """)
    op.execute(
        "CREATE INDEX ix_intervention_assignments_intervention_id"
        " ON intervention_assignments (intervention_id);"
    )
    op.execute(
        "CREATE INDEX ix_intervention_assignments_user_id ON intervention_assignments (user_id);"
    )

    op.execute("""
        CREATE TABLE intervention_transitions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            from_status interventionstatus NOT NULL,
            to_status interventionstatus NOT NULL,
            action interventionaction NOT NULL,
            triggered_by UUID REFERENCES users(id) ON DELETE SET NULL,
            trigger_source VARCHAR(20) NOT NULL DEFAULT 'USER',
            reason TEXT,
            metadata_extra JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_intervention_transitions_intervention_id"
        " ON intervention_transitions (intervention_id);"
    )

    op.execute("""
        CREATE TABLE intervention_reports (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            author_id UUID REFERENCES users(id) ON DELETE SET NULL,
            report_type reporttype NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            is_contest BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_intervention_reports_intervention_id"
        " ON intervention_reports (intervention_id);"
    )

    op.execute("""
        CREATE TABLE intervention_documents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            uploaded_by UUID REFERENCES users(id) ON DELETE SET NULL,
            filename VARCHAR(255) NOT NULL,
            storage_path VARCHAR(1024) NOT NULL,
            document_type VARCHAR(50) NOT NULL DEFAULT 'other',
            size_bytes BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_intervention_documents_intervention_id"
        " ON intervention_documents (intervention_id);"
    )

    # ── 4. Quotes ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE quotes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            provider_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status quotestatus NOT NULL DEFAULT 'pending',
            amount NUMERIC(12,2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'EUR',
            description TEXT,
            submitted_at TIMESTAMPTZ,
            validated_at TIMESTAMPTZ,
            validated_by UUID REFERENCES users(id) ON DELETE SET NULL,
            rejection_reason VARCHAR(500),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_quotes_amount_non_negative CHECK (amount >= 0)
        );
    """)
    op.execute("CREATE INDEX ix_quotes_intervention_id_status ON quotes (intervention_id, status);")
    op.execute("CREATE INDEX ix_quotes_provider_id ON quotes (provider_id);")
    # At most one accepted quote per intervention
    op.execute(
        "CREATE UNIQUE INDEX uq_quotes_one_accepted ON quotes (intervention_id)"
        " WHERE status = 'accepted';"
    )

    # ── 5. Conversations ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE conversation_threads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            intervention_id UUID NOT NULL REFERENCES interventions(id) ON DELETE CASCADE,
            team_id UUID NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
            thread_type threadtype NOT NULL DEFAULT 'group',
            title VARCHAR(255),
            last_message_at TIMESTAMPTZ,
            message_count INTEGER NOT NULL DEFAULT 0,
            last_email_notification_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_conversation_threads_intervention_id"
        " ON conversation_threads (intervention_id);"
    )

    op.execute("""
        CREATE TABLE conversation_participants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            thread_id UUID NOT NULL REFERENCES conversation_threads(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            last_read_at TIMESTAMPTZ,
            CONSTRAINT uq_conversation_participant UNIQUE (thread_id, user_id)
        );
    """)

    op.execute("""
        CREATE TABLE conversation_messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            thread_id UUID NOT NULL REFERENCES conversation_threads(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_conversation_messages_thread_id_created_at"
        " ON conversation_messages (thread_id, created_at);"
    )

    # ── 6. Notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            team_id UUID REFERENCES teams(id) ON DELETE CASCADE,
            created_by UUID REFERENCES users(id) ON DELETE SET NULL,
            type notificationtype NOT NULL,
            priority notificationpriority NOT NULL DEFAULT 'normal',
            title VARCHAR(255) NOT NULL,
            message TEXT NOT NULL,
            is_personal BOOLEAN NOT NULL DEFAULT true,
            metadata_extra JSONB NOT NULL DEFAULT '{}',
            related_entity_type VARCHAR(50),
            related_entity_id UUID,
            read BOOLEAN NOT NULL DEFAULT false,
            read_at TIMESTAMPTZ,
            archived BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_notifications_user_id_read ON notifications (user_id, read);")
    op.execute(
        "CREATE INDEX ix_notifications_related_entity"
        " ON notifications (related_entity_type, related_entity_id);"
    )

    op.execute("""
        CREATE TABLE push_subscriptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            endpoint TEXT NOT NULL,
            p256dh VARCHAR(255) NOT NULL,
            auth VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_push_subscriptions_endpoint UNIQUE (endpoint)
        );
    """)
    op.execute("CREATE INDEX ix_push_subscriptions_user_id ON push_subscriptions (user_id);")


def downgrade() -> None:
    for table in (
        "push_subscriptions",
        "notifications",
        "conversation_messages",
        "conversation_participants",
        "conversation_threads",
        "quotes",
        "intervention_documents",
        "intervention_reports",
        "intervention_transitions",
        "intervention_assignments",
        "interventions",
        "users",
        "teams",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")

    for enum_name in (
        "notificationpriority",
        "notificationtype",
        "threadtype",
        "quotestatus",
        "reporttype",
        "interventionurgency",
        "interventionaction",
        "interventionstatus",
        "assignmentrole",
        "userrole",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name};")
