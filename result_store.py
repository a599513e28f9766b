"""
Record store for the result subsystem.

The only module that talks to PostgreSQL. The card service receives an
instance, so the engine and the assembler never touch a connection.
"""

import logging
from contextlib import contextmanager
from datetime import datetime

import psycopg2

from db import db_connection, db_execute, rows_to_dicts

logger = logging.getLogger(__name__)

BEHAVIOR_TRAITS = ('punctuality', 'neatness', 'honesty', 'cooperation', 'attentiveness', 'politeness')

RESULT_SHEET_COLUMNS = (
    'teacher_comment', 'principal_comment',
) + BEHAVIOR_TRAITS + (
    'days_present', 'days_absent', 'total_school_days',
    'next_term_begins', 'next_term_fees', 'is_published',
)

STUDENT_SELECT = '''SELECT s.id, s.student_id, s.first_name, s.last_name, s.gender, s.date_of_birth,
                           s.class_id, COALESCE(cl.name, '') AS class_name, COALESCE(cl.level, '') AS class_level
                    FROM students s
                    LEFT JOIN classes cl ON cl.id = s.class_id'''


class ResultStoreError(Exception):
    """A read or write against the result database failed."""


def normalize_sheet_row(row):
    if not row:
        return None
    sheet = dict(row)
    sheet['is_published'] = bool(int(sheet.get('is_published') or 0))
    return sheet


class ResultStore:
    """psycopg2-backed access to students, grades, attendance and result sheets."""

    def __init__(self, database_url=None):
        self.database_url = database_url

    @contextmanager
    def _cursor(self, commit=False):
        try:
            with db_connection(self.database_url, commit=commit) as conn:
                yield conn.cursor()
        except psycopg2.Error as exc:
            logger.exception("Result store query failed")
            raise ResultStoreError(str(exc).strip() or exc.__class__.__name__) from exc

    # ---------- school / classes / students ----------

    def get_school_settings(self):
        with self._cursor() as c:
            db_execute(c, 'SELECT key, value FROM school_settings')
            return {row['key']: row['value'] for row in c.fetchall()}

    def list_classes(self, teacher_id=None):
        with self._cursor() as c:
            if teacher_id:
                db_execute(c, 'SELECT id, name, level FROM classes WHERE teacher_id = ? ORDER BY name', (teacher_id,))
            else:
                db_execute(c, 'SELECT id, name, level FROM classes ORDER BY name')
            return rows_to_dicts(c.fetchall())

    def teacher_has_class_access(self, teacher_id, class_id):
        with self._cursor() as c:
            db_execute(c, 'SELECT 1 FROM classes WHERE id = ? AND teacher_id = ? LIMIT 1', (class_id, teacher_id))
            return c.fetchone() is not None

    def load_student(self, student_pk):
        with self._cursor() as c:
            db_execute(c, STUDENT_SELECT + ' WHERE s.id = ?', (student_pk,))
            row = c.fetchone()
        return dict(row) if row else None

    def load_class_students(self, class_id):
        """Active students of a class, ordered by admission number."""
        with self._cursor() as c:
            db_execute(
                c,
                STUDENT_SELECT + ' WHERE s.class_id = ? AND COALESCE(s.is_active, 1) = 1 ORDER BY s.student_id',
                (class_id,),
            )
            return rows_to_dicts(c.fetchall())

    def parent_student_ids(self, parent_id):
        with self._cursor() as c:
            db_execute(c, 'SELECT student_id FROM parent_students WHERE parent_id = ?', (parent_id,))
            return {row[0] for row in c.fetchall()}

    # ---------- grades ----------

    def load_grades(self, student_pk, term, academic_year):
        with self._cursor() as c:
            db_execute(
                c,
                '''SELECT student_id, subject, assessment_type, score, max_score, term, academic_year
                   FROM grades
                   WHERE student_id = ? AND term = ? AND academic_year = ?
                   ORDER BY created_at, id''',
                (student_pk, term, academic_year),
            )
            return rows_to_dicts(c.fetchall())

    def load_class_grades(self, student_pks, term, academic_year):
        """Grade rows for many students at once, grouped by student."""
        by_student = {pk: [] for pk in student_pks or []}
        if not by_student:
            return by_student
        with self._cursor() as c:
            db_execute(
                c,
                '''SELECT student_id, subject, assessment_type, score, max_score, term, academic_year
                   FROM grades
                   WHERE student_id = ANY(?) AND term = ? AND academic_year = ?
                   ORDER BY created_at, id''',
                (list(by_student), term, academic_year),
            )
            for row in c.fetchall():
                by_student.setdefault(row['student_id'], []).append(dict(row))
        return by_student

    def insert_grade(self, record, graded_by=None):
        with self._cursor(commit=True) as c:
            db_execute(
                c,
                '''INSERT INTO grades (student_id, subject, assessment_type, score, max_score, term, academic_year, graded_by)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)''',
                (
                    record['student_id'],
                    record['subject'],
                    record['assessment_type'],
                    record['score'],
                    record['max_score'],
                    record['term'],
                    record['academic_year'],
                    graded_by,
                ),
            )

    # ---------- attendance ----------

    def load_attendance_statuses(self, student_pk, start, end):
        with self._cursor() as c:
            db_execute(
                c,
                'SELECT status FROM attendance WHERE student_id = ? AND date BETWEEN ? AND ? ORDER BY date',
                (student_pk, start, end),
            )
            return [row[0] for row in c.fetchall()]

    def load_class_attendance_statuses(self, student_pks, start, end):
        by_student = {pk: [] for pk in student_pks or []}
        if not by_student:
            return by_student
        with self._cursor() as c:
            db_execute(
                c,
                'SELECT student_id, status FROM attendance WHERE student_id = ANY(?) AND date BETWEEN ? AND ?',
                (list(by_student), start, end),
            )
            for row in c.fetchall():
                by_student.setdefault(row[0], []).append(row[1])
        return by_student

    # ---------- result sheets ----------

    def load_result_sheet(self, student_pk, term, academic_year, published_only=False):
        query = '''SELECT * FROM result_sheets
                   WHERE student_id = ? AND term = ? AND academic_year = ?'''
        if published_only:
            query += ' AND is_published = 1'
        with self._cursor() as c:
            db_execute(c, query + ' LIMIT 1', (student_pk, term, academic_year))
            return normalize_sheet_row(c.fetchone())

    def load_result_sheets(self, student_pks, term, academic_year):
        if not student_pks:
            return {}
        with self._cursor() as c:
            db_execute(
                c,
                'SELECT * FROM result_sheets WHERE student_id = ANY(?) AND term = ? AND academic_year = ?',
                (list(student_pks), term, academic_year),
            )
            return {row['student_id']: normalize_sheet_row(row) for row in c.fetchall()}

    def upsert_result_sheet(self, student_pk, term, academic_year, meta, created_by=None):
        """Insert or overwrite the sheet keyed on (student, term, academic year)."""
        values = [meta.get(col) for col in RESULT_SHEET_COLUMNS]
        values[RESULT_SHEET_COLUMNS.index('is_published')] = 1 if meta.get('is_published') else 0
        columns = ', '.join(RESULT_SHEET_COLUMNS)
        placeholders = ', '.join('?' for _ in RESULT_SHEET_COLUMNS)
        updates = ',\n                     '.join(f"{col} = excluded.{col}" for col in RESULT_SHEET_COLUMNS)
        with self._cursor(commit=True) as c:
            db_execute(
                c,
                f'''INSERT INTO result_sheets (student_id, term, academic_year, {columns}, created_by, updated_at)
                   VALUES (?, ?, ?, {placeholders}, ?, ?)
                   ON CONFLICT(student_id, term, academic_year) DO UPDATE SET
                     {updates},
                     created_by = excluded.created_by,
                     updated_at = excluded.updated_at''',
                tuple([student_pk, term, academic_year] + values + [created_by, datetime.now()]),
            )

    def delete_result_sheet(self, student_pk, term, academic_year):
        with self._cursor(commit=True) as c:
            db_execute(
                c,
                'DELETE FROM result_sheets WHERE student_id = ? AND term = ? AND academic_year = ?',
                (student_pk, term, academic_year),
            )
            return int(c.rowcount or 0)
