"""Initial schema - streams, users, courses, classes, reports, feedback and audit logs

Revision ID: 001
Revises:
Create Date: 2025-02-03 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'streams',
        sa.Column('stream_id', sa.Integer(), nullable=False),
        sa.Column('stream_name', sa.String(length=255), nullable=False),
        sa.Column('stream_code', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('stream_id'),
        sa.UniqueConstraint('stream_name'),
        sa.UniqueConstraint('stream_code')
    )
    op.create_index('idx_stream_code', 'streams', ['stream_code'])

    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('stream_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['stream_id'], ['streams.stream_id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('email'),
        sa.CheckConstraint(
            "role IN ('student', 'lecturer', 'principal_lecturer', 'program_leader')",
            name='ck_user_role'
        ),
        # Every role but program_leader belongs to a stream
        sa.CheckConstraint(
            "role = 'program_leader' OR stream_id IS NOT NULL",
            name='ck_user_stream_required'
        )
    )
    op.create_index('idx_user_stream', 'users', ['stream_id'])
    op.create_index('idx_user_role', 'users', ['role'])

    op.create_table(
        'courses',
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('course_name', sa.String(length=255), nullable=False),
        sa.Column('course_code', sa.String(length=50), nullable=False),
        sa.Column('stream_id', sa.Integer(), nullable=False),
        sa.Column('lecturer_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['stream_id'], ['streams.stream_id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['lecturer_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('course_id'),
        sa.UniqueConstraint('course_code')
    )
    op.create_index('idx_course_stream', 'courses', ['stream_id'])
    op.create_index('idx_course_lecturer', 'courses', ['lecturer_id'])

    op.create_table(
        'classes',
        sa.Column('class_id', sa.Integer(), nullable=False),
        sa.Column('class_name', sa.String(length=100), nullable=False),
        sa.Column('stream_id', sa.Integer(), nullable=False),
        sa.Column('total_students', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['stream_id'], ['streams.stream_id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('class_id')
    )
    op.create_index('idx_class_stream', 'classes', ['stream_id'])

    op.create_table(
        'class_courses',
        sa.Column('class_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['class_id'], ['classes.class_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['course_id'], ['courses.course_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('class_id', 'course_id')
    )

    op.create_table(
        'reports',
        sa.Column('report_id', sa.Integer(), nullable=False),
        sa.Column('lecturer_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('class_id', sa.Integer(), nullable=False),
        sa.Column('week_of_reporting', sa.Integer(), nullable=False),
        sa.Column('date_of_lecture', sa.Date(), nullable=False),
        sa.Column('venue', sa.String(length=255), nullable=False),
        sa.Column('scheduled_time', sa.String(length=20), nullable=False),
        sa.Column('topic_taught', sa.Text(), nullable=False),
        sa.Column('learning_outcomes', sa.Text(), nullable=False),
        sa.Column('actual_students_present', sa.Integer(), nullable=False),
        sa.Column('total_registered_students', sa.Integer(), nullable=False),
        sa.Column('recommendations', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['lecturer_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['course_id'], ['courses.course_id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['class_id'], ['classes.class_id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('report_id'),
        sa.CheckConstraint("status IN ('pending', 'reviewed', 'approved')", name='ck_report_status')
    )
    op.create_index('idx_report_lecturer', 'reports', ['lecturer_id'])
    op.create_index('idx_report_course', 'reports', ['course_id'])
    op.create_index('idx_report_class', 'reports', ['class_id'])
    op.create_index('idx_report_status', 'reports', ['status'])
    op.create_index('idx_report_date', 'reports', ['date_of_lecture'])

    op.create_table(
        'report_feedback',
        sa.Column('feedback_id', sa.Integer(), nullable=False),
        sa.Column('report_id', sa.Integer(), nullable=False),
        sa.Column('prl_id', sa.Integer(), nullable=True),
        sa.Column('feedback_text', sa.Text(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['report_id'], ['reports.report_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['prl_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('feedback_id'),
        sa.CheckConstraint('rating IS NULL OR (rating >= 1 AND rating <= 5)', name='ck_feedback_rating')
    )
    op.create_index('idx_feedback_report', 'report_feedback', ['report_id'])
    op.create_index('idx_feedback_prl', 'report_feedback', ['prl_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=True),
        sa.Column('resource_id', sa.String(length=100), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_user', 'audit_logs', ['user_id'])
    op.create_index('idx_audit_action', 'audit_logs', ['action'])
    op.create_index('idx_audit_created', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('report_feedback')
    op.drop_table('reports')
    op.drop_table('class_courses')
    op.drop_table('classes')
    op.drop_table('courses')
    op.drop_table('users')
    op.drop_table('streams')
