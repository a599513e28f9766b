"""Dual-format HTML rendering of assembled report cards."""

import re
from datetime import date, datetime

from flask import render_template
from markupsafe import Markup

from result_engine import GRADING_SCALE, overall_grade

NURSERY_FORMAT = 'nursery'
PRIMARY_FORMAT = 'primary'

EARLY_YEARS_PREFIXES = ('CRECHE', 'PRENURSERY', 'NURSERY', 'KINDERGARTEN', 'KG', 'PLAYGROUP', 'RECEPTION')

MIN_SUBJECT_ROWS = 10

BEHAVIOR_LABELS = (
    ('punctuality', 'Punctuality'),
    ('neatness', 'Neatness'),
    ('honesty', 'Honesty'),
    ('cooperation', 'Cooperation'),
    ('attentiveness', 'Attentiveness'),
    ('politeness', 'Politeness'),
)
BEHAVIOR_LETTER = {5: 'A', 4: 'B', 3: 'C', 2: 'D', 1: 'E'}
BEHAVIOR_WORD = {5: 'Excellent', 4: 'Very Good', 3: 'Good', 2: 'Fair', 1: 'Poor'}


def canonicalize_classname(value):
    """Canonical class key (e.g. 'Nursery 1' -> 'NURSERY1')."""
    return re.sub(r'[^A-Za-z0-9]+', '', (value or '').strip()).upper()


def is_early_years(class_level, class_name=''):
    for value in (class_level, class_name):
        key = canonicalize_classname(value)
        if key and key.startswith(EARLY_YEARS_PREFIXES):
            return True
    return False


def card_format(card):
    student = (card or {}).get('student', {})
    if is_early_years(student.get('class_level'), student.get('class_name')):
        return NURSERY_FORMAT
    return PRIMARY_FORMAT


def ordinal(value):
    """Return ordinal string for an integer (e.g., 1 -> 1st)."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return str(value)
    abs_n = abs(n)
    if 10 <= (abs_n % 100) <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(abs_n % 10, 'th')
    return f"{n}{suffix}"


def long_date(value):
    """'2025-01-06' -> '6 January 2025'; unparseable text is returned as-is."""
    if not value:
        return ''
    if isinstance(value, str):
        try:
            value = datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()
        except ValueError:
            return value
    if isinstance(value, (date, datetime)):
        return f"{value.day} {value.strftime('%B %Y')}"
    return str(value)


def component_cell(value):
    """Blank components print as a dash, as on the paper cards."""
    if value is None or value <= 0:
        return '—'
    return value


def subject_rows(subjects, min_rows=MIN_SUBJECT_ROWS):
    rows = list(subjects or [])
    rows.extend([None] * max(0, min_rows - len(rows)))
    return rows


def behavior_rows(behavior, per_row=2):
    """Pair traits up for the two-column trait table."""
    cells = []
    for key, label in BEHAVIOR_LABELS:
        rating = int((behavior or {}).get(key) or 0)
        cells.append({
            'label': label,
            'letter': BEHAVIOR_LETTER.get(rating, '—'),
            'word': BEHAVIOR_WORD.get(rating, '—'),
        })
    return [cells[i:i + per_row] for i in range(0, len(cells), per_row)]


def register_template_filters(app):
    app.jinja_env.filters['ordinal'] = ordinal
    app.jinja_env.filters['long_date'] = long_date


def render_context(card):
    subjects = card.get('subjects', [])
    stats = card.get('class_stats', {})
    return {
        'card': card,
        'subject_rows': subject_rows(subjects),
        'summary_grade': overall_grade(subjects, stats.get('grand_total', 0)),
        'behavior_rows': behavior_rows(card.get('behavior')),
        'grading_scale': GRADING_SCALE,
        'rating_key': sorted(BEHAVIOR_WORD.items(), reverse=True),
        'behavior_letter': BEHAVIOR_LETTER,
        'component_cell': component_cell,
        'show_ranking': bool(stats.get('position')),
    }


def render_result_card(card):
    """Render one card in the layout its class level calls for."""
    fmt = card.get('format') or card_format(card)
    template = 'results/card_nursery.html' if fmt == NURSERY_FORMAT else 'results/card_primary.html'
    return Markup(render_template(template, **render_context(card)))
