import pytest

from report_card import (
    EMPTY_META,
    ResultAccessError,
    assemble_result_card,
    merge_meta,
    school_identity,
    sheet_status,
)
from report_render import NURSERY_FORMAT, PRIMARY_FORMAT

TERM = "First Term"
YEAR = "2024/2025"


def publish(fake_store, student_pk, **meta):
    sheet = dict(EMPTY_META, is_published=True)
    sheet.update(meta)
    fake_store.upsert_result_sheet(student_pk, TERM, YEAR, sheet, created_by=10)


def test_staff_card_has_full_class_statistics(service):
    card = service.build_card("school_admin", 1, 1, TERM, YEAR)
    assert [s["subject"] for s in card["subjects"]] == ["English Language", "Mathematics"]
    assert card["class_stats"] == {
        "position": 1,
        "total_students": 3,
        "grand_total": 144,
        "highest_in_class": 144,
        "lowest_in_class": 120,
        "class_average": 132,
    }
    assert card["student"]["name"] == "Ada Obi"
    assert card["student"]["class_name"] == "Primary 3"
    assert card["school"]["name"] == "Bright Future School"
    assert card["format"] == PRIMARY_FORMAT


def test_student_without_grades_is_placed_after_ranked_students(service):
    card = service.build_card("teacher", 10, 3, TERM, YEAR)
    assert card["subjects"] == []
    assert card["class_stats"]["grand_total"] == 0
    assert card["class_stats"]["position"] == 3


def test_build_card_is_deterministic(service):
    first = service.build_card("school_admin", 1, 1, TERM, YEAR)
    second = service.build_card("school_admin", 1, 1, TERM, YEAR)
    assert first == second


def test_staff_card_uses_computed_attendance_without_override(service):
    card = service.build_card("school_admin", 1, 1, TERM, YEAR)
    assert card["attendance"] == {"days_present": 1, "days_absent": 2, "total_days": 3}


def test_staff_card_uses_saved_attendance_override(service, fake_store):
    fake_store.upsert_result_sheet(1, TERM, YEAR, dict(EMPTY_META, days_present=55, days_absent=5, total_school_days=60))
    card = service.build_card("school_admin", 1, 1, TERM, YEAR)
    assert card["attendance"] == {"days_present": 55, "days_absent": 5, "total_days": 60}


def test_parent_sees_nothing_until_sheet_is_published(service, fake_store):
    assert service.build_card("parent", 20, 1, TERM, YEAR) is None

    fake_store.upsert_result_sheet(1, TERM, YEAR, dict(EMPTY_META, teacher_comment="Good work"))
    assert service.build_card("parent", 20, 1, TERM, YEAR) is None

    publish(fake_store, 1, teacher_comment="Good work", punctuality=5)
    card = service.build_card("parent", 20, 1, TERM, YEAR)
    assert card["comments"]["teacher"] == "Good work"
    assert card["behavior"]["punctuality"] == 5


def test_published_card_hides_class_figures_but_keeps_grand_total(service, fake_store):
    publish(fake_store, 1)
    card = service.build_card("parent", 20, 1, TERM, YEAR)
    assert card["class_stats"]["grand_total"] == 144
    assert card["class_stats"]["position"] == 0
    assert card["class_stats"]["total_students"] == 0
    assert card["class_stats"]["class_average"] == 0


def test_deleting_sheet_removes_card_for_parent_only_for_that_student(service, fake_store):
    publish(fake_store, 1)
    publish(fake_store, 2)

    assert service.delete_sheet("teacher", 10, 1, TERM, YEAR) == 1

    assert service.build_card("parent", 20, 1, TERM, YEAR) is None
    assert service.build_card("parent", 21, 2, TERM, YEAR) is not None
    assert service.build_card("school_admin", 1, 1, TERM, YEAR) is not None


def test_parent_cannot_open_unlinked_student(service, fake_store):
    publish(fake_store, 2)
    with pytest.raises(ResultAccessError):
        service.build_card("parent", 20, 2, TERM, YEAR)


def test_student_can_only_open_own_card(service, fake_store):
    publish(fake_store, 1)
    assert service.build_card("student", 1, 1, TERM, YEAR) is not None
    with pytest.raises(ResultAccessError):
        service.build_card("student", 2, 1, TERM, YEAR)


def test_teacher_needs_class_assignment(service):
    with pytest.raises(ResultAccessError):
        service.build_card("teacher", 11, 1, TERM, YEAR)


def test_unknown_role_is_rejected(service):
    with pytest.raises(ResultAccessError):
        service.build_card("visitor", 1, 1, TERM, YEAR)


def test_nursery_student_gets_nursery_format(service):
    card = service.build_card("school_admin", 1, 4, TERM, YEAR)
    assert card["format"] == NURSERY_FORMAT


def test_build_batch_keeps_selection_order_and_ranks_against_whole_class(service):
    cards = service.build_batch("teacher", 10, 1, [3, 1, 2], TERM, YEAR)
    assert [c["student"]["student_id"] for c in cards] == ["S003", "S001", "S002"]
    assert [c["class_stats"]["position"] for c in cards] == [3, 1, 2]
    assert all(c["class_stats"]["total_students"] == 3 for c in cards)


def test_build_batch_matches_single_card(service):
    [batch_card] = service.build_batch("school_admin", 1, 1, [2], TERM, YEAR)
    assert batch_card == service.build_card("school_admin", 1, 2, TERM, YEAR)


def test_build_batch_rejects_students_outside_class(service):
    with pytest.raises(ResultAccessError):
        service.build_batch("school_admin", 1, 1, [1, 4], TERM, YEAR)


def test_build_batch_is_staff_only(service):
    with pytest.raises(ResultAccessError):
        service.build_batch("parent", 20, 1, [1], TERM, YEAR)


def test_save_sheet_upserts_by_student_term_and_year(service, fake_store):
    service.save_sheet("teacher", 10, 1, TERM, YEAR, {"teacher_comment": "First", "punctuality": 4})
    service.save_sheet("teacher", 10, 1, TERM, YEAR, {"teacher_comment": "Second", "punctuality": 5})
    assert len(fake_store.sheets) == 1
    sheet = fake_store.sheets[(1, TERM, YEAR)]
    assert sheet["teacher_comment"] == "Second"
    assert sheet["punctuality"] == 5
    assert sheet["created_by"] == 10


def test_save_sheet_is_staff_only(service):
    with pytest.raises(ResultAccessError):
        service.save_sheet("parent", 20, 1, TERM, YEAR, {"teacher_comment": "Hi"})


def test_sheet_form_values_default_ratings_and_autofill_attendance(service):
    values = service.load_sheet_form_values("school_admin", 1, 1, TERM, YEAR)
    assert values["punctuality"] == 3
    assert values["politeness"] == 3
    assert values["total_school_days"] == 3
    assert values["days_present"] == 1
    assert values["is_published"] is False


def test_class_roster_reports_sheet_status_and_counters(service, fake_store):
    fake_store.upsert_result_sheet(1, TERM, YEAR, dict(EMPTY_META))
    publish(fake_store, 2)
    roster = service.class_roster("teacher", 10, 1, TERM, YEAR)
    assert [row["status"] for row in roster["rows"]] == ["draft", "published", "not_created"]
    assert roster["total_students"] == 3
    assert roster["sheets_created"] == 2
    assert roster["published"] == 1


def test_record_grade_checks_access_and_stores(service, fake_store):
    record = {"student_id": 1, "subject": "Basic Science", "assessment_type": "Exam", "score": 40,
              "max_score": 60, "term": TERM, "academic_year": YEAR}
    service.record_grade("teacher", 10, record)
    assert fake_store.inserted_grades == [(record, 10)]
    with pytest.raises(ResultAccessError):
        service.record_grade("student", 1, record)


def test_viewable_students_for_parent_and_student(service):
    assert [s["student_id"] for s in service.viewable_students("parent", 20)] == ["S001"]
    assert [s["student_id"] for s in service.viewable_students("student", 2)] == ["S002"]
    assert service.viewable_students("school_admin", 1) == []


def test_assemble_result_card_defaults_missing_meta():
    card = assemble_result_card({"first_name": "Ada"}, [], None, None, TERM, YEAR)
    assert card["behavior"]["honesty"] == 0
    assert card["attendance"] == {"days_present": 0, "days_absent": 0, "total_days": 0}
    assert card["comments"] == {"teacher": "", "principal": ""}
    assert card["class_stats"]["grand_total"] == 0


def test_merge_meta_ignores_unknown_and_none_values():
    merged = merge_meta({"teacher_comment": None, "neatness": 4, "unexpected": "x"})
    assert merged["teacher_comment"] == ""
    assert merged["neatness"] == 4
    assert "unexpected" not in merged


def test_school_identity_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("SCHOOL_NAME", "Env School")
    assert school_identity({})["name"] == "Env School"
    assert school_identity({"school_name": "Db School"})["name"] == "Db School"


def test_sheet_status():
    assert sheet_status(None) == "not_created"
    assert sheet_status({"is_published": False}) == "draft"
    assert sheet_status({"is_published": True}) == "published"


def test_class_roster_reports_attendance_rate_counting_late_as_attended(service):
    roster = service.class_roster("school_admin", 1, 1, TERM, YEAR)
    rates = {row["student"]["student_id"]: row["attendance_rate"] for row in roster["rows"]}
    # present + late out of three rows in the first-term window
    assert rates == {"S001": 67, "S002": 0, "S003": 0}


def test_build_batch_reads_class_attendance_once(service, fake_store, monkeypatch):
    calls = []
    original = fake_store.load_class_attendance_statuses

    def counting(student_pks, start, end):
        calls.append(list(student_pks))
        return original(student_pks, start, end)

    def per_student(*args, **kwargs):
        raise AssertionError("batch cards must not query attendance per student")

    monkeypatch.setattr(fake_store, "load_class_attendance_statuses", counting)
    monkeypatch.setattr(fake_store, "load_attendance_statuses", per_student)

    cards = service.build_batch("school_admin", 1, 1, [1, 2], TERM, YEAR)
    assert calls == [[1, 2]]
    assert cards[0]["attendance"] == {"days_present": 1, "days_absent": 2, "total_days": 3}
    assert cards[1]["attendance"] == {"days_present": 0, "days_absent": 0, "total_days": 0}
