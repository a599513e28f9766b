"""Initial schema for the result computation system.

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the tables and indexes the result engine reads and writes."""

    # School identity printed on every card (school_name, school_address, school_motto)
    op.execute('''CREATE TABLE IF NOT EXISTS school_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # Classes; level drives the nursery vs primary card layout
    op.execute('''CREATE TABLE IF NOT EXISTS classes (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    level TEXT,
                    teacher_id INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS students (
                    id SERIAL PRIMARY KEY,
                    student_id TEXT UNIQUE NOT NULL,
                    first_name TEXT NOT NULL,
                    last_name TEXT,
                    gender TEXT,
                    date_of_birth DATE,
                    class_id INTEGER REFERENCES classes(id) ON DELETE SET NULL,
                    is_active INTEGER DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS parent_students (
                    id SERIAL PRIMARY KEY,
                    parent_id INTEGER NOT NULL,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    UNIQUE(parent_id, student_id)
                )''')

    # One row per assessment entry; scaled into subject slots at read time
    op.execute('''CREATE TABLE IF NOT EXISTS grades (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    subject TEXT NOT NULL,
                    assessment_type TEXT NOT NULL,
                    score NUMERIC NOT NULL DEFAULT 0,
                    max_score NUMERIC NOT NULL DEFAULT 100,
                    term TEXT NOT NULL,
                    academic_year TEXT NOT NULL,
                    graded_by INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    # status: present, absent, late, excused
    op.execute('''CREATE TABLE IF NOT EXISTS attendance (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    date DATE NOT NULL,
                    status TEXT NOT NULL DEFAULT 'present',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(student_id, date)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS result_sheets (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    term TEXT NOT NULL,
                    academic_year TEXT NOT NULL,
                    teacher_comment TEXT DEFAULT '',
                    principal_comment TEXT DEFAULT '',
                    punctuality INTEGER DEFAULT 3,
                    neatness INTEGER DEFAULT 3,
                    honesty INTEGER DEFAULT 3,
                    cooperation INTEGER DEFAULT 3,
                    attentiveness INTEGER DEFAULT 3,
                    politeness INTEGER DEFAULT 3,
                    days_present INTEGER DEFAULT 0,
                    days_absent INTEGER DEFAULT 0,
                    total_school_days INTEGER DEFAULT 0,
                    next_term_begins TEXT DEFAULT '',
                    next_term_fees TEXT DEFAULT '',
                    is_published INTEGER DEFAULT 0,
                    created_by INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('CREATE UNIQUE INDEX IF NOT EXISTS uq_result_sheets_student_term ON result_sheets(student_id, term, academic_year)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_grades_student_term ON grades(student_id, term, academic_year)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_attendance_student_date ON attendance(student_id, date)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_classes_teacher ON classes(teacher_id)')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS result_sheets CASCADE')
    op.execute('DROP TABLE IF EXISTS attendance CASCADE')
    op.execute('DROP TABLE IF EXISTS grades CASCADE')
    op.execute('DROP TABLE IF EXISTS parent_students CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS classes CASCADE')
    op.execute('DROP TABLE IF EXISTS school_settings CASCADE')
