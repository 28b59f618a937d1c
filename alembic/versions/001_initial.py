"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enums are stored as plain strings (native_enum=False)
STATUS = sa.String(30)


def upgrade() -> None:
    op.create_table(
        'api_keys',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('key_hash', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('key_prefix', sa.String(12), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('owner', sa.String(100), nullable=False),
        sa.Column('scopes', postgresql.JSON(), nullable=True),
        sa.Column('rate_limit_per_minute', sa.Integer(), nullable=False),
        sa.Column('rate_limit_per_hour', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'submissions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('doctor_name', sa.String(200), nullable=False),
        sa.Column('doctor_email', sa.String(255), nullable=True),
        sa.Column('doctor_phone', sa.String(20), nullable=True),
        sa.Column('doctor_specialization', sa.String(200), nullable=True),
        sa.Column('doctor_clinic_name', sa.String(200), nullable=True),
        sa.Column('doctor_city', sa.String(100), nullable=True),
        sa.Column('doctor_state', sa.String(100), nullable=True),
        sa.Column('years_of_practice', sa.Integer(), nullable=True),
        sa.Column('mr_name', sa.String(200), nullable=True),
        sa.Column('mr_code', sa.String(50), nullable=True, index=True),
        sa.Column('mr_phone', sa.String(20), nullable=True),
        sa.Column('campaign_name', sa.String(200), nullable=True),
        sa.Column('image_path', sa.Text(), nullable=True),
        sa.Column('image_public_url', sa.Text(), nullable=True),
        sa.Column('submission_prefix', sa.String(255), nullable=True),
        sa.Column('upload_source', STATUS, nullable=False),
        sa.Column('audio_duration_seconds', sa.Float(), nullable=True),
        sa.Column('status', STATUS, nullable=False, index=True),
        sa.Column('consent_status', STATUS, nullable=False),
        sa.Column('consent_otp_hash', sa.String(255), nullable=True),
        sa.Column('consent_otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consent_otp_attempts', sa.Integer(), nullable=False),
        sa.Column('consent_otp_channel', sa.String(10), nullable=True),
        sa.Column('consent_otp_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consent_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voice_id', sa.String(100), nullable=True),
        sa.Column('voice_clone_status', STATUS, nullable=False),
        sa.Column('voice_clone_error', sa.Text(), nullable=True),
        sa.Column('voice_cloned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voice_released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('qc_status', STATUS, nullable=False, index=True),
        sa.Column('qc_notes', sa.Text(), nullable=True),
        sa.Column('qc_reviewed_by', sa.String(100), nullable=True),
        sa.Column('qc_reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('qc_lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_key_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'submission_languages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('language_code', sa.String(10), nullable=False),
        sa.UniqueConstraint('submission_id', 'language_code'),
    )

    op.create_table(
        'submission_audio_samples',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('filename', sa.String(255), nullable=True),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('size_bytes', sa.Integer(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
    )

    op.create_table(
        'audio_masters',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('language_code', sa.String(10), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'generated_audio',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('language_code', sa.String(10), nullable=False),
        sa.Column('status', STATUS, nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=True),
        sa.Column('public_url', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('audio_master_id', sa.Integer(), sa.ForeignKey('audio_masters.id', ondelete='SET NULL'), nullable=True),
        sa.Column('provider_request_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('submission_id', 'language_code'),
    )

    op.create_table(
        'generated_videos',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('language_code', sa.String(10), nullable=False),
        sa.Column('generated_audio_id', sa.Integer(), sa.ForeignKey('generated_audio.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', STATUS, nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=True),
        sa.Column('public_url', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('uploaded_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('submission_id', 'language_code'),
    )

    op.create_table(
        'qc_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('reviewer_name', sa.String(100), nullable=False),
        sa.Column('previous_status', sa.String(30), nullable=True),
        sa.Column('new_status', sa.String(30), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    for table in ('image_validations', 'audio_validations'):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('storage_path', sa.Text(), nullable=True),
            sa.Column('is_valid', sa.Boolean(), nullable=False),
            sa.Column('errors', postgresql.JSON(), nullable=True),
            sa.Column('warnings', postgresql.JSON(), nullable=True),
            sa.Column('details', postgresql.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        )

    op.create_table(
        'audit_log',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('api_key_id', postgresql.UUID(as_uuid=False), nullable=True, index=True),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(100), nullable=True, index=True),
        sa.Column('actor', sa.String(100), nullable=True),
        sa.Column('details', postgresql.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('audio_validations')
    op.drop_table('image_validations')
    op.drop_table('qc_history')
    op.drop_table('generated_videos')
    op.drop_table('generated_audio')
    op.drop_table('audio_masters')
    op.drop_table('submission_audio_samples')
    op.drop_table('submission_languages')
    op.drop_table('submissions')
    op.drop_table('api_keys')
