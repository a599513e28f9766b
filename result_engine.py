"""
Result computation engine.

Turns raw assessment rows into per-subject results, grades them on the
national (WAEC-style) scale, ranks a class, and resolves the attendance
window for a term. Everything here is pure: callers fetch the rows and
hand them in.
"""

import math
import re
from datetime import date

TERMS = ('First Term', 'Second Term', 'Third Term')

HOMEWORK = 'homework'
CA1 = 'ca1'
CA2 = 'ca2'
EXAM = 'exam'
UNCLASSIFIED = 'unclassified'
ASSESSMENT_SLOTS = (HOMEWORK, CA1, CA2, EXAM)

# Unmatched labels fill these slots in order.
FALLBACK_SLOTS = (CA1, CA2)

ASSESSMENT_ALIASES = {
    'home work': HOMEWORK,
    'homework': HOMEWORK,
    '1st ca': CA1,
    'first ca': CA1,
    '1st continuous assessment': CA1,
    '2nd ca': CA2,
    'second ca': CA2,
    '2nd continuous assessment': CA2,
    'exam': EXAM,
    'examination': EXAM,
    'final exam': EXAM,
}

SLOT_SCALES = {
    HOMEWORK: 20,
    CA1: 20,
    CA2: 20,
    EXAM: 60,
}

# (lower bound, grade, remark, printed range)
GRADING_SCALE = (
    (75, 'A1', 'Excellent', '75-100'),
    (70, 'B2', 'Very Good', '70-74'),
    (65, 'B3', 'Good', '65-69'),
    (60, 'C4', 'Credit', '60-64'),
    (55, 'C5', 'Credit', '55-59'),
    (50, 'C6', 'Credit', '50-54'),
    (45, 'D7', 'Pass', '45-49'),
    (40, 'E8', 'Pass', '40-44'),
    (0, 'F9', 'Failure', '0-39'),
)

ATTENDED_STATUSES = ('present', 'late')


def round_half_up(value):
    """Round .5 away from zero for positive values (browser Math.round semantics)."""
    return int(math.floor(float(value) + 0.5))


# ==================== ASSESSMENT CLASSIFIER ====================

def normalize_assessment_label(label):
    return (label or '').strip().lower()


def classify_assessment_label(label):
    """Return a (slot, label) pair; slot is UNCLASSIFIED when no alias matches."""
    slot = ASSESSMENT_ALIASES.get(normalize_assessment_label(label))
    if slot is None:
        return UNCLASSIFIED, label
    return slot, label


def new_slot_accumulator():
    return {slot: None for slot in ASSESSMENT_SLOTS}


def place_assessment(slots, record):
    """Put one record into a subject's slots. Returns the slot used, or None if dropped."""
    slot, _label = classify_assessment_label(record.get('assessment_type'))
    if slot == UNCLASSIFIED:
        slot = next((s for s in FALLBACK_SLOTS if slots.get(s) is None), None)
        if slot is None:
            return None
    slots[slot] = {
        'score': record.get('score'),
        'max': record.get('max_score'),
    }
    return slot


# ==================== SUBJECT SCORE AGGREGATOR ====================

def scale_component(entry, scale):
    if not entry:
        return 0
    try:
        score = float(entry.get('score') or 0)
        max_score = float(entry.get('max') or 0)
    except (TypeError, ValueError):
        return 0
    if max_score <= 0:
        return 0
    return round_half_up(score / max_score * scale)


def subject_sort_key(name):
    """
    Case-insensitive order with an exact-case tie-break.

    Not locale collation: 'English' sorts before 'english' (a browser's
    localeCompare puts lowercase first), and accented initials sort after 'z'.
    """
    return (name.casefold(), name)


def group_by_subject(records):
    """Classify records per trimmed subject name, keeping first-seen record order."""
    grouped = {}
    for record in records or []:
        subject = (record.get('subject') or '').strip()
        if subject not in grouped:
            grouped[subject] = new_slot_accumulator()
        place_assessment(grouped[subject], record)
    return grouped


def compute_subject_results(records):
    """Build one SubjectResult dict per subject for a single student/term/year."""
    results = []
    grouped = group_by_subject(records)
    for subject in sorted(grouped, key=subject_sort_key):
        slots = grouped[subject]
        ca1 = scale_component(slots[CA1], SLOT_SCALES[CA1])
        ca2 = scale_component(slots[CA2], SLOT_SCALES[CA2])
        exam = scale_component(slots[EXAM], SLOT_SCALES[EXAM])
        homework = None
        if slots[HOMEWORK]:
            homework = scale_component(slots[HOMEWORK], SLOT_SCALES[HOMEWORK])
        # Homework is reported but never summed into the total.
        total = ca1 + ca2 + exam
        result = {
            'subject': subject,
            'homework': homework,
            'ca1': ca1,
            'ca2': ca2,
            'exam': exam,
            'total': total,
        }
        result.update(nigerian_grade(total))
        results.append(result)
    return results


# ==================== GRADING CLASSIFIER ====================

def nigerian_grade(total):
    """Map a 0-100 total to its grade band."""
    score = total or 0
    for lower, grade, remark, _printed in GRADING_SCALE:
        if score >= lower:
            return {'grade': grade, 'remark': remark}
    return {'grade': 'F9', 'remark': 'Failure'}


def overall_grade(subjects, grand):
    """Grade of the rounded per-subject average, or None without subjects."""
    if not subjects:
        return None
    return nigerian_grade(round_half_up(grand / len(subjects)))


# ==================== CLASS STATISTICS & RANKING ====================

def grand_total(subjects):
    return sum(s.get('total', 0) for s in subjects or [])


def ranked_totals(class_totals):
    """Non-zero totals, best first. Zero means no data yet and is left out."""
    return sorted((t for t in class_totals if t > 0), reverse=True)


def class_position(student_total, ranked):
    """1-based position; tied totals share the best position."""
    if student_total > 0 and student_total in ranked:
        return ranked.index(student_total) + 1
    return len(ranked) + 1


def class_statistics(student_total, class_totals, total_students=None):
    """ClassStatistics for one student against every grand total in the class."""
    class_totals = list(class_totals or [])
    ranked = ranked_totals(class_totals)
    if total_students is None:
        total_students = len(class_totals)
    average = round_half_up(sum(ranked) / len(ranked)) if ranked else 0
    return {
        'position': class_position(student_total, ranked),
        'total_students': total_students,
        'grand_total': student_total,
        'highest_in_class': ranked[0] if ranked else 0,
        'lowest_in_class': ranked[-1] if ranked else 0,
        'class_average': average,
    }


def published_statistics(stats):
    """Strip cross-student figures for parent/student viewers."""
    return {
        'position': 0,
        'total_students': 0,
        'grand_total': (stats or {}).get('grand_total', 0),
        'highest_in_class': 0,
        'lowest_in_class': 0,
        'class_average': 0,
    }


# ==================== ATTENDANCE WINDOW ====================

def parse_academic_year(academic_year):
    """Split 'YYYY/YYYY' into (start_year, end_year)."""
    match = re.fullmatch(r'\s*(\d{4})\s*[/-]\s*(\d{4})\s*', academic_year or '')
    if not match:
        raise ValueError(f"Academic year must look like 2024/2025, got {academic_year!r}")
    start_year, end_year = int(match.group(1)), int(match.group(2))
    if end_year != start_year + 1:
        raise ValueError(f"Academic year {academic_year!r} must span two consecutive years")
    return start_year, end_year


def term_date_range(term, academic_year):
    """Calendar (start, end) dates used to pull attendance for a term."""
    start_year, end_year = parse_academic_year(academic_year)
    key = (term or '').strip().lower()
    if key == 'first term':
        return date(start_year, 9, 1), date(start_year, 12, 31)
    if key == 'second term':
        return date(end_year, 1, 1), date(end_year, 4, 30)
    if key == 'third term':
        return date(end_year, 5, 1), date(end_year, 7, 31)
    return date(start_year, 9, 1), date(end_year, 7, 31)


def summarize_attendance(statuses):
    """Present vs not-present counts over attendance rows in a term window."""
    statuses = [(s or '').strip().lower() for s in statuses or []]
    present = sum(1 for s in statuses if s == 'present')
    return {
        'days_present': present,
        'days_absent': len(statuses) - present,
        'total_school_days': len(statuses),
    }


def attendance_rate(statuses):
    """Percentage of rows counted as attended (present or late)."""
    statuses = [(s or '').strip().lower() for s in statuses or []]
    if not statuses:
        return 0
    attended = sum(1 for s in statuses if s in ATTENDED_STATUSES)
    return round_half_up(attended / len(statuses) * 100)


def resolve_attendance(meta, computed):
    """A saved non-zero total_school_days overrides the computed counts."""
    meta = meta or {}
    if int(meta.get('total_school_days') or 0):
        return {
            'days_present': int(meta.get('days_present') or 0),
            'days_absent': int(meta.get('days_absent') or 0),
            'total_school_days': int(meta.get('total_school_days') or 0),
        }
    computed = computed or {}
    return {
        'days_present': int(computed.get('days_present') or 0),
        'days_absent': int(computed.get('days_absent') or 0),
        'total_school_days': int(computed.get('total_school_days') or 0),
    }


# ==================== ACADEMIC CALENDAR ====================

def default_academic_year(today=None):
    """Academic years run September to August."""
    today = today or date.today()
    if today.month >= 9:
        return f"{today.year}/{today.year + 1}"
    return f"{today.year - 1}/{today.year}"


def academic_year_options(today=None, back=3):
    start_year, _end_year = parse_academic_year(default_academic_year(today))
    return [f"{y}/{y + 1}" for y in range(start_year + 1, start_year - back - 1, -1)]
