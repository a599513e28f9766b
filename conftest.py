import copy
import os
from datetime import date

import pytest
from flask import Flask

TEMPLATES = os.path.join(os.path.dirname(os.path.abspath(__file__)), "frontend", "templates")


def grade(student_id, subject, assessment_type, score, max_score, term="First Term", academic_year="2024/2025"):
    return {
        "student_id": student_id,
        "subject": subject,
        "assessment_type": assessment_type,
        "score": score,
        "max_score": max_score,
        "term": term,
        "academic_year": academic_year,
    }


class FakeStore:
    """In-memory stand-in for ResultStore with the same method surface."""

    def __init__(self):
        self.settings = {"school_name": "Bright Future School", "school_address": "12 Palm Close, Enugu", "school_motto": "Knowledge and Character"}
        self.classes = {
            1: {"id": 1, "name": "Primary 3", "level": "Primary 3", "teacher_id": 10},
            2: {"id": 2, "name": "Nursery 1", "level": "Nursery 1", "teacher_id": 11},
        }
        self.students = {
            1: {"id": 1, "student_id": "S001", "first_name": "Ada", "last_name": "Obi", "gender": "Female", "date_of_birth": date(2016, 3, 4), "class_id": 1},
            2: {"id": 2, "student_id": "S002", "first_name": "Bayo", "last_name": "Ade", "gender": "Male", "date_of_birth": date(2016, 7, 9), "class_id": 1},
            3: {"id": 3, "student_id": "S003", "first_name": "Chi", "last_name": "Eze", "gender": "Female", "date_of_birth": None, "class_id": 1},
            4: {"id": 4, "student_id": "N001", "first_name": "Dami", "last_name": "Okafor", "gender": "Male", "date_of_birth": None, "class_id": 2},
        }
        self.parent_links = {20: {1}, 21: {2}}
        self.grades = [
            grade(1, "Mathematics", "1st CA", 18, 20),
            grade(1, "Mathematics", "2nd CA", 16, 20),
            grade(1, "Mathematics", "Exam", 50, 60),
            grade(1, "English Language", "1st CA", 15, 20),
            grade(1, "English Language", "Exam", 45, 60),
            grade(1, "English Language", "Homework", 10, 10),
            grade(2, "Mathematics", "Exam", 60, 60),
            grade(2, "English Language", "Exam", 60, 60),
            grade(4, "Rhymes", "Exam", 30, 60),
        ]
        self.attendance = {
            1: [(date(2024, 9, 2), "present"), (date(2024, 9, 3), "late"), (date(2024, 9, 4), "absent"), (date(2025, 1, 8), "present")],
        }
        self.sheets = {}
        self.inserted_grades = []

    # school / classes / students

    def get_school_settings(self):
        return dict(self.settings)

    def list_classes(self, teacher_id=None):
        return [dict(c) for c in self.classes.values() if teacher_id is None or c["teacher_id"] == teacher_id]

    def teacher_has_class_access(self, teacher_id, class_id):
        cls = self.classes.get(class_id)
        return bool(cls and cls["teacher_id"] == teacher_id)

    def _with_class(self, student):
        row = dict(student)
        cls = self.classes.get(student["class_id"], {})
        row["class_name"] = cls.get("name", "")
        row["class_level"] = cls.get("level", "")
        return row

    def load_student(self, student_pk):
        student = self.students.get(student_pk)
        return self._with_class(student) if student else None

    def load_class_students(self, class_id):
        rows = [self._with_class(s) for s in self.students.values() if s["class_id"] == class_id]
        return sorted(rows, key=lambda s: s["student_id"])

    def parent_student_ids(self, parent_id):
        return set(self.parent_links.get(parent_id, set()))

    # grades

    def load_grades(self, student_pk, term, academic_year):
        return [
            dict(g) for g in self.grades
            if g["student_id"] == student_pk and g["term"] == term and g["academic_year"] == academic_year
        ]

    def load_class_grades(self, student_pks, term, academic_year):
        return {pk: self.load_grades(pk, term, academic_year) for pk in student_pks}

    def insert_grade(self, record, graded_by=None):
        self.inserted_grades.append((dict(record), graded_by))
        self.grades.append(dict(record))

    # attendance

    def _attendance_statuses(self, student_pk, start, end):
        return [status for day, status in self.attendance.get(student_pk, []) if start <= day <= end]

    def load_attendance_statuses(self, student_pk, start, end):
        return self._attendance_statuses(student_pk, start, end)

    def load_class_attendance_statuses(self, student_pks, start, end):
        return {pk: self._attendance_statuses(pk, start, end) for pk in student_pks}

    # result sheets

    def load_result_sheet(self, student_pk, term, academic_year, published_only=False):
        sheet = self.sheets.get((student_pk, term, academic_year))
        if sheet is None or (published_only and not sheet.get("is_published")):
            return None
        return copy.deepcopy(sheet)

    def load_result_sheets(self, student_pks, term, academic_year):
        found = {}
        for pk in student_pks:
            sheet = self.sheets.get((pk, term, academic_year))
            if sheet is not None:
                found[pk] = copy.deepcopy(sheet)
        return found

    def upsert_result_sheet(self, student_pk, term, academic_year, meta, created_by=None):
        sheet = dict(meta, student_id=student_pk, term=term, academic_year=academic_year, created_by=created_by)
        sheet["is_published"] = bool(sheet.get("is_published"))
        self.sheets[(student_pk, term, academic_year)] = sheet

    def delete_result_sheet(self, student_pk, term, academic_year):
        return 1 if self.sheets.pop((student_pk, term, academic_year), None) is not None else 0


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def service(fake_store):
    from report_card import ResultCardService

    return ResultCardService(fake_store)


def make_card(class_level="Primary 3", subjects=None, stats=None, meta=None, name="Ada"):
    from report_card import assemble_result_card
    from result_engine import class_statistics, compute_subject_results, grand_total

    if subjects is None:
        subjects = compute_subject_results([
            grade(1, "Mathematics", "1st CA", 18, 20),
            grade(1, "Mathematics", "Exam", 50, 60),
            grade(1, "English Language", "Exam", 45, 60),
        ])
    if stats is None:
        stats = class_statistics(grand_total(subjects), [grand_total(subjects), 90], 2)
    student = {"first_name": name, "last_name": "Obi", "student_id": "S001", "class_name": class_level, "class_level": class_level}
    school = {"name": "Bright Future School", "address": "Enugu", "motto": "Knowledge"}
    return assemble_result_card(student, subjects, stats, meta or {}, "First Term", "2024/2025", school)


@pytest.fixture
def render_app():
    from report_render import register_template_filters

    app = Flask(__name__, template_folder=TEMPLATES)
    register_template_filters(app)
    with app.test_request_context():
        yield app
