"""scheduling core tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "professional_profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("specialty", sa.String(120), nullable=True),
        sa.Column("appointment_duration", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("buffer_between_slots", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.CheckConstraint("appointment_duration > 0", name="ck_prof_duration_positive"),
    )

    op.create_table(
        "patients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("last_visit_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "appointment_recurrences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "professional_profile_id",
            sa.Uuid(),
            sa.ForeignKey("professional_profiles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("patient_id", sa.Uuid(), sa.ForeignKey("patients.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("recurrence_type", sa.String(10), nullable=False),
        sa.Column("recurrence_end_type", sa.String(16), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("occurrences", sa.Integer(), nullable=True),
        sa.Column("last_generated_date", sa.Date(), nullable=True),
        sa.Column("exceptions", sa.JSON(), nullable=False),
        sa.Column("modality", sa.String(20), nullable=False, server_default="PRESENCIAL"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_recurrence_dow_range"),
        sa.CheckConstraint("duration > 0", name="ck_recurrence_duration_positive"),
        sa.CheckConstraint(
            "recurrence_type IN ('WEEKLY', 'BIWEEKLY', 'MONTHLY')", name="ck_recurrence_type_valid"
        ),
        sa.CheckConstraint(
            "recurrence_end_type IN ('BY_DATE', 'BY_OCCURRENCES', 'INDEFINITE')",
            name="ck_recurrence_end_type_valid",
        ),
    )
    op.create_index(
        "ix_recurrence_prof_active", "appointment_recurrences", ["professional_profile_id", "is_active"]
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "professional_profile_id",
            sa.Uuid(),
            sa.ForeignKey("professional_profiles.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("patient_id", sa.Uuid(), sa.ForeignKey("patients.id", ondelete="RESTRICT"), nullable=True),
        sa.Column(
            "recurrence_id",
            sa.Uuid(),
            sa.ForeignKey("appointment_recurrences.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("group_id", sa.Uuid(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="AGENDADO"),
        sa.Column("type", sa.String(20), nullable=False, server_default="CONSULTA"),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("blocks_time", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("modality", sa.String(20), nullable=False, server_default="PRESENCIAL"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_at > scheduled_at", name="ck_appt_time_order"),
    )
    op.create_index(
        "ix_appt_prof_start_end", "appointments", ["professional_profile_id", "scheduled_at", "end_at"]
    )
    op.create_index("ix_appt_recurrence", "appointments", ["recurrence_id"])
    op.create_index("ix_appt_group", "appointments", ["group_id"])

    op.create_table(
        "appointment_tokens",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "appointment_id",
            sa.Uuid(),
            sa.ForeignKey("appointments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("token", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("action IN ('confirm', 'cancel')", name="ck_token_action_valid"),
    )
    op.create_index("ix_token_appointment", "appointment_tokens", ["appointment_id", "used_at"])

    op.create_table(
        "availability_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "professional_profile_id",
            sa.Uuid(),
            sa.ForeignKey("professional_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_rule_dow_range"),
        sa.CheckConstraint("end_time > start_time", name="ck_rule_time_order"),
    )
    op.create_index("ix_rule_prof_dow", "availability_rules", ["professional_profile_id", "day_of_week"])

    op.create_table(
        "availability_exceptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "professional_profile_id",
            sa.Uuid(),
            sa.ForeignKey("professional_profiles.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("start_time", sa.String(5), nullable=True),
        sa.Column("end_time", sa.String(5), nullable=True),
        sa.Column("reason", sa.String(200), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(is_recurring AND day_of_week IS NOT NULL) OR (NOT is_recurring AND date IS NOT NULL)",
            name="ck_exception_when",
        ),
    )
    op.create_index("ix_exception_prof_date", "availability_exceptions", ["professional_profile_id", "date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(80), nullable=False),
        sa.Column("entity_type", sa.String(60), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ix_exception_prof_date", table_name="availability_exceptions")
    op.drop_table("availability_exceptions")
    op.drop_index("ix_rule_prof_dow", table_name="availability_rules")
    op.drop_table("availability_rules")
    op.drop_index("ix_token_appointment", table_name="appointment_tokens")
    op.drop_table("appointment_tokens")
    op.drop_index("ix_appt_group", table_name="appointments")
    op.drop_index("ix_appt_recurrence", table_name="appointments")
    op.drop_index("ix_appt_prof_start_end", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_recurrence_prof_active", table_name="appointment_recurrences")
    op.drop_table("appointment_recurrences")
    op.drop_table("patients")
    op.drop_table("professional_profiles")
