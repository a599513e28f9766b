"""
Report card assembly and role-scoped access.

`assemble_result_card` is the pure merge of identity, subject results,
class statistics and result-sheet meta. `ResultCardService` wires it to a
record store and applies the access policy of each role.
"""

import logging
import os

from result_engine import (
    attendance_rate,
    class_statistics,
    compute_subject_results,
    grand_total,
    published_statistics,
    resolve_attendance,
    summarize_attendance,
    term_date_range,
)
from result_store import BEHAVIOR_TRAITS
from report_render import card_format

logger = logging.getLogger(__name__)

# Role -> what the role may see and do.
ROLE_POLICIES = {
    'school_admin': {'full_statistics': True, 'can_write': True, 'published_only': False},
    'teacher': {'full_statistics': True, 'can_write': True, 'published_only': False},
    'parent': {'full_statistics': False, 'can_write': False, 'published_only': True},
    'student': {'full_statistics': False, 'can_write': False, 'published_only': True},
}

EMPTY_META = {
    'teacher_comment': '',
    'principal_comment': '',
    'punctuality': 0,
    'neatness': 0,
    'honesty': 0,
    'cooperation': 0,
    'attentiveness': 0,
    'politeness': 0,
    'days_present': 0,
    'days_absent': 0,
    'total_school_days': 0,
    'next_term_begins': '',
    'next_term_fees': '',
    'is_published': False,
}

# Starting values for a sheet that has never been saved.
SHEET_FORM_DEFAULTS = dict(EMPTY_META, punctuality=3, neatness=3, honesty=3,
                           cooperation=3, attentiveness=3, politeness=3)


class ResultAccessError(Exception):
    """The viewer's role does not allow this result operation."""


def policy_for(role):
    policy = ROLE_POLICIES.get(role)
    if policy is None:
        raise ResultAccessError(f"Role {role!r} cannot open result cards.")
    return policy


def student_display_name(student):
    student = student or {}
    return ' '.join(p for p in (student.get('first_name'), student.get('last_name')) if p).strip()


def merge_meta(meta):
    merged = dict(EMPTY_META)
    for key, value in (meta or {}).items():
        if key in merged and value is not None:
            merged[key] = value
    return merged


def assemble_result_card(student, subjects, class_stats, meta, term, academic_year, school=None):
    """Merge everything a report card shows into one ResultCardData dict."""
    student = student or {}
    school = school or {}
    meta = merge_meta(meta)
    card = {
        'student': {
            'name': student_display_name(student),
            'student_id': student.get('student_id', ''),
            'class_name': student.get('class_name') or '',
            'class_level': student.get('class_level') or '',
            'gender': student.get('gender') or '',
            'dob': student.get('date_of_birth') or '',
        },
        'term': term,
        'academic_year': academic_year,
        'subjects': list(subjects or []),
        'class_stats': dict(class_stats or class_statistics(grand_total(subjects), [])),
        'behavior': {trait: int(meta.get(trait) or 0) for trait in BEHAVIOR_TRAITS},
        'attendance': {
            'days_present': int(meta.get('days_present') or 0),
            'days_absent': int(meta.get('days_absent') or 0),
            'total_days': int(meta.get('total_school_days') or 0),
        },
        'comments': {
            'teacher': meta.get('teacher_comment') or '',
            'principal': meta.get('principal_comment') or '',
        },
        'next_term': {
            'begins': meta.get('next_term_begins') or '',
            'fees': meta.get('next_term_fees') or '',
        },
        'school': {
            'name': school.get('name', ''),
            'address': school.get('address', ''),
            'motto': school.get('motto', ''),
        },
    }
    card['format'] = card_format(card)
    return card


def school_identity(settings=None):
    """School identity from the settings table, falling back to the environment."""
    settings = settings or {}
    return {
        'name': settings.get('school_name') or os.environ.get('SCHOOL_NAME', 'School Name'),
        'address': settings.get('school_address') or os.environ.get('SCHOOL_ADDRESS', ''),
        'motto': settings.get('school_motto') or os.environ.get('SCHOOL_MOTTO', ''),
    }


def sheet_status(sheet):
    if not sheet:
        return 'not_created'
    return 'published' if sheet.get('is_published') else 'draft'


class ResultCardService:
    """Single result engine consumed by every role's screen."""

    def __init__(self, store):
        self.store = store

    # ---------- access ----------

    def ensure_student_access(self, role, viewer_id, student):
        policy = policy_for(role)
        if not student:
            raise ResultAccessError('Student not found.')
        if role == 'teacher':
            if not self.store.teacher_has_class_access(viewer_id, student.get('class_id')):
                raise ResultAccessError('You are not assigned to this class.')
        elif role == 'parent':
            if student.get('id') not in self.store.parent_student_ids(viewer_id):
                raise ResultAccessError('This student is not linked to your account.')
        elif role == 'student':
            if str(student.get('id')) != str(viewer_id):
                raise ResultAccessError('You can only view your own result.')
        return policy

    def ensure_class_access(self, role, viewer_id, class_id):
        policy = policy_for(role)
        if not policy['full_statistics']:
            raise ResultAccessError('Class results are only available to staff.')
        if role == 'teacher' and not self.store.teacher_has_class_access(viewer_id, class_id):
            raise ResultAccessError('You are not assigned to this class.')
        return policy

    # ---------- class level ----------

    def school(self):
        return school_identity(self.store.get_school_settings())

    def class_grand_totals(self, students, term, academic_year):
        """Grand total per student from one read of the whole class's grades."""
        grades = self.store.load_class_grades([s['id'] for s in students], term, academic_year)
        return {
            s['id']: grand_total(compute_subject_results(grades.get(s['id'], [])))
            for s in students
        }

    def classes_for(self, role, viewer_id):
        if not policy_for(role)['full_statistics']:
            return []
        if role == 'teacher':
            return self.store.list_classes(teacher_id=viewer_id)
        return self.store.list_classes()

    def viewable_students(self, role, viewer_id):
        """Students a parent or student may open cards for."""
        policy_for(role)
        if role == 'parent':
            pks = sorted(self.store.parent_student_ids(viewer_id))
        elif role == 'student':
            pks = [viewer_id]
        else:
            return []
        students = [self.store.load_student(pk) for pk in pks]
        return [s for s in students if s]

    def class_roster(self, role, viewer_id, class_id, term, academic_year):
        """Students of a class with their sheet status, plus the counters shown above the list."""
        self.ensure_class_access(role, viewer_id, class_id)
        students = self.store.load_class_students(class_id)
        sheets = self.store.load_result_sheets([s['id'] for s in students], term, academic_year)
        statuses = self.class_attendance_statuses(students, term, academic_year)
        rows = []
        for student in students:
            sheet = sheets.get(student['id'])
            rows.append({
                'student': student,
                'name': student_display_name(student),
                'status': sheet_status(sheet),
                'attendance_rate': attendance_rate(statuses.get(student['id'], [])),
            })
        return {
            'rows': rows,
            'total_students': len(students),
            'sheets_created': len(sheets),
            'published': sum(1 for s in sheets.values() if s and s.get('is_published')),
        }

    # ---------- attendance ----------

    def computed_attendance(self, student_pk, term, academic_year):
        start, end = term_date_range(term, academic_year)
        return summarize_attendance(self.store.load_attendance_statuses(student_pk, start, end))

    def class_attendance_statuses(self, students, term, academic_year):
        """Attendance statuses for a whole class from one read over the term window."""
        start, end = term_date_range(term, academic_year)
        return self.store.load_class_attendance_statuses([s['id'] for s in students], start, end)

    def attendance_autofill(self, role, viewer_id, student_pk, term, academic_year):
        """Counts the sheet form should show: the saved override, else the term window's rows."""
        student = self.store.load_student(student_pk)
        policy = self.ensure_student_access(role, viewer_id, student)
        if not policy['can_write']:
            raise ResultAccessError('Only staff can fill result sheets.')
        sheet = self.store.load_result_sheet(student_pk, term, academic_year)
        return resolve_attendance(sheet, self.computed_attendance(student_pk, term, academic_year))

    # ---------- cards ----------

    def build_card(self, role, viewer_id, student_pk, term, academic_year):
        """Fresh ResultCardData for one student, or None when nothing may be shown yet."""
        student = self.store.load_student(student_pk)
        policy = self.ensure_student_access(role, viewer_id, student)
        sheet = self.store.load_result_sheet(
            student_pk, term, academic_year, published_only=policy['published_only'],
        )
        subjects = compute_subject_results(self.store.load_grades(student_pk, term, academic_year))

        if policy['published_only']:
            if not sheet or not sheet.get('is_published'):
                return None
            stats = published_statistics({'grand_total': grand_total(subjects)})
            return assemble_result_card(student, subjects, stats, sheet, term, academic_year, self.school())

        classmates = self.store.load_class_students(student.get('class_id'))
        totals = self.class_grand_totals(classmates, term, academic_year)
        stats = class_statistics(grand_total(subjects), totals.values(), len(classmates))
        meta = dict(sheet or {})
        meta.update(resolve_attendance(sheet, self.computed_attendance(student_pk, term, academic_year)))
        return assemble_result_card(student, subjects, stats, meta, term, academic_year, self.school())

    def build_batch(self, role, viewer_id, class_id, student_pks, term, academic_year):
        """Cards for the selected students, in selection order, ranked once against the class."""
        self.ensure_class_access(role, viewer_id, class_id)
        classmates = self.store.load_class_students(class_id)
        by_pk = {s['id']: s for s in classmates}
        missing = [pk for pk in student_pks if pk not in by_pk]
        if missing:
            raise ResultAccessError('Some selected students are not in this class.')

        grades = self.store.load_class_grades(list(by_pk), term, academic_year)
        subjects_by_pk = {pk: compute_subject_results(grades.get(pk, [])) for pk in by_pk}
        totals = [grand_total(subs) for subs in subjects_by_pk.values()]
        sheets = self.store.load_result_sheets(list(student_pks), term, academic_year)
        statuses = self.class_attendance_statuses([by_pk[pk] for pk in student_pks], term, academic_year)
        school = self.school()

        cards = []
        for pk in student_pks:
            subjects = subjects_by_pk[pk]
            stats = class_statistics(grand_total(subjects), totals, len(classmates))
            sheet = sheets.get(pk)
            meta = dict(sheet or {})
            meta.update(resolve_attendance(sheet, summarize_attendance(statuses.get(pk, []))))
            cards.append(assemble_result_card(by_pk[pk], subjects, stats, meta, term, academic_year, school))
        logger.info("Built %d result cards for class %s (%s %s)", len(cards), class_id, term, academic_year)
        return cards

    # ---------- writes ----------

    def record_grade(self, role, viewer_id, record):
        student = self.store.load_student(record['student_id'])
        policy = self.ensure_student_access(role, viewer_id, student)
        if not policy['can_write']:
            raise ResultAccessError('Only staff can enter grades.')
        self.store.insert_grade(record, graded_by=viewer_id)
        logger.info("Grade recorded for student %s: %s / %s", record['student_id'], record['subject'], record['assessment_type'])

    def load_sheet_form_values(self, role, viewer_id, student_pk, term, academic_year):
        student = self.store.load_student(student_pk)
        policy = self.ensure_student_access(role, viewer_id, student)
        if not policy['can_write']:
            raise ResultAccessError('Only staff can edit result sheets.')
        sheet = self.store.load_result_sheet(student_pk, term, academic_year)
        values = dict(SHEET_FORM_DEFAULTS)
        values.update({k: v for k, v in (sheet or {}).items() if k in values and v is not None})
        values.update(resolve_attendance(sheet, self.computed_attendance(student_pk, term, academic_year)))
        return values

    def save_sheet(self, role, viewer_id, student_pk, term, academic_year, meta):
        student = self.store.load_student(student_pk)
        policy = self.ensure_student_access(role, viewer_id, student)
        if not policy['can_write']:
            raise ResultAccessError('Only staff can save result sheets.')
        self.store.upsert_result_sheet(student_pk, term, academic_year, merge_meta(meta), created_by=viewer_id)
        logger.info("Result sheet saved for student %s (%s %s) by %s", student_pk, term, academic_year, viewer_id)

    def delete_sheet(self, role, viewer_id, student_pk, term, academic_year):
        student = self.store.load_student(student_pk)
        policy = self.ensure_student_access(role, viewer_id, student)
        if not policy['can_write']:
            raise ResultAccessError('Only staff can delete result sheets.')
        deleted = self.store.delete_result_sheet(student_pk, term, academic_year)
        logger.info("Result sheet deleted for student %s (%s %s): %d row(s)", student_pk, term, academic_year, deleted)
        return deleted
