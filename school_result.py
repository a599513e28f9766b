"""
School Result Computation & Report Cards

Flask web application that computes subject results from raw assessment
rows, ranks each class, and renders and prints report cards for school
admins, teachers, parents and students.
"""

from flask import Flask, render_template, request, redirect, url_for, session, flash, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from flask_migrate import Migrate
from datetime import date

import os
import logging
from dotenv import load_dotenv

from result_engine import TERMS, academic_year_options, default_academic_year, parse_academic_year
from result_store import ResultStore, ResultStoreError
from report_card import ResultAccessError, ResultCardService, policy_for, student_display_name
from report_render import register_template_filters, render_result_card
from print_jobs import PrintError, PrintJob, open_response_surface
from result_forms import AssessmentForm, ResultSheetForm, validate_assessment_entry

load_dotenv()

app = Flask(__name__, template_folder='frontend/templates', static_folder='static')
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None

csrf = CSRFProtect(app)
migrate = Migrate(app, directory='migrations')

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if not DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")

app.config['PRINTING_ENABLED'] = os.environ.get('PRINTING_ENABLED', '1').strip().lower() in ('1', 'true', 'yes')
try:
    PRINT_RENDER_TIMEOUT = float(os.environ.get('PRINT_RENDER_TIMEOUT', '') or 0) or None
except ValueError:
    raise RuntimeError("PRINT_RENDER_TIMEOUT must be a number of seconds.")
LOG_FILE = os.environ.get('LOG_FILE', 'app.log').strip() or 'app.log'

logging.basicConfig(filename=LOG_FILE, level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

register_template_filters(app)

result_service = ResultCardService(ResultStore(DATABASE_URL))

# ==================== HELPERS ====================

def current_viewer():
    return session.get('role'), session.get('user_id')


def selected_period(source=None, strict=False):
    """
    Term and academic year from the request, validated.

    Pages fall back to the first term and the current year. Writes pass
    strict=True so an unknown term is rejected instead of landing on another sheet.
    """
    source = source if source is not None else request.values
    term = (source.get('term', '') or '').strip()
    if term not in TERMS:
        if strict:
            raise ValueError(f"Unknown term {term!r}. Choose one of: {', '.join(TERMS)}.")
        term = TERMS[0]
    academic_year = (source.get('academic_year', '') or '').strip() or default_academic_year()
    parse_academic_year(academic_year)
    return term, academic_year


def back_to_card(student_id, term, academic_year):
    return redirect(url_for('result_card', student_id=student_id, term=term, academic_year=academic_year))


def sheet_form_from_values(values):
    data = dict(values)
    begins = data.get('next_term_begins')
    if isinstance(begins, str):
        try:
            data['next_term_begins'] = date.fromisoformat(begins[:10]) if begins else None
        except ValueError:
            data['next_term_begins'] = None
    return ResultSheetForm(data=data)


def open_print_surface(title):
    return open_response_surface(title, enabled=app.config.get('PRINTING_ENABLED', True))

# ==================== ERROR HANDLERS ====================

@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    flash('Form token expired/invalid. Please retry your last action.', 'error')
    return redirect(request.referrer or url_for('results_index'))


@app.errorhandler(ResultAccessError)
def result_access_error(error):
    logging.warning("Result access denied for %s %s: %s", session.get('role'), session.get('user_id'), error)
    flash(str(error), 'error')
    return redirect(url_for('results_index'))


@app.errorhandler(ResultStoreError)
def result_store_error(error):
    flash('Could not reach the results database. Please try again.', 'error')
    return redirect(url_for('results_index'))


@app.errorhandler(PrintError)
def print_error(error):
    flash(str(error), 'error')
    return redirect(request.referrer or url_for('results_index'))

# ==================== ROUTES ====================

@app.route('/')
def home():
    return redirect(url_for('results_index'))


@app.route('/results')
def results_index():
    role, viewer_id = current_viewer()
    if role is None:
        return render_template('results/class_results.html', role=None, classes=[], roster=None,
                               students=[], selected_class=None, term=TERMS[0],
                               academic_year=default_academic_year(), terms=TERMS,
                               year_options=academic_year_options()), 401
    try:
        term, academic_year = selected_period()
    except ValueError as exc:
        flash(str(exc), 'error')
        term, academic_year = TERMS[0], default_academic_year()

    classes, roster, students, selected_class = [], None, [], None
    try:
        policy = policy_for(role)
        if policy['full_statistics']:
            classes = result_service.classes_for(role, viewer_id)
            class_id = request.args.get('class_id', type=int)
            if class_id is None and classes:
                class_id = classes[0]['id']
            selected_class = next((c for c in classes if c['id'] == class_id), None)
            if selected_class:
                roster = result_service.class_roster(role, viewer_id, class_id, term, academic_year)
        else:
            students = [
                {'student': s, 'name': student_display_name(s)}
                for s in result_service.viewable_students(role, viewer_id)
            ]
    except (ResultStoreError, ResultAccessError) as exc:
        flash(str(exc), 'error')

    return render_template('results/class_results.html',
                           role=role,
                           classes=classes,
                           selected_class=selected_class,
                           roster=roster,
                           students=students,
                           term=term,
                           academic_year=academic_year,
                           terms=TERMS,
                           year_options=academic_year_options())


@app.route('/results/<int:student_id>/card')
def result_card(student_id):
    role, viewer_id = current_viewer()
    try:
        term, academic_year = selected_period()
    except ValueError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('results_index'))

    card = result_service.build_card(role, viewer_id, student_id, term, academic_year)
    if card is None:
        flash(f'The {term} {academic_year} result has not been published yet.', 'error')
        return redirect(url_for('results_index', term=term, academic_year=academic_year))

    can_write = policy_for(role)['can_write']
    form = None
    grade_form = None
    if can_write:
        form = sheet_form_from_values(
            result_service.load_sheet_form_values(role, viewer_id, student_id, term, academic_year)
        )
        grade_form = AssessmentForm(data={'student_id': student_id, 'term': term, 'academic_year': academic_year})

    return render_template('results/result_card.html',
                           card=card,
                           card_html=render_result_card(card),
                           student_id=student_id,
                           term=term,
                           academic_year=academic_year,
                           terms=TERMS,
                           year_options=academic_year_options(),
                           can_write=can_write,
                           form=form,
                           grade_form=grade_form)


@app.route('/results/<int:student_id>/sheet', methods=['POST'])
def save_result_sheet(student_id):
    role, viewer_id = current_viewer()
    try:
        term, academic_year = selected_period(request.form, strict=True)
    except ValueError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('results_index'))

    form = ResultSheetForm()
    if not form.validate_on_submit():
        for field_errors in form.errors.values():
            flash(field_errors[0], 'error')
            break
        return back_to_card(student_id, term, academic_year)

    result_service.save_sheet(role, viewer_id, student_id, term, academic_year, form.to_meta())
    flash('Result sheet saved.', 'success')
    return back_to_card(student_id, term, academic_year)


@app.route('/results/<int:student_id>/sheet/delete', methods=['POST'])
def delete_result_sheet(student_id):
    role, viewer_id = current_viewer()
    try:
        term, academic_year = selected_period(request.form, strict=True)
    except ValueError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('results_index'))

    deleted = result_service.delete_sheet(role, viewer_id, student_id, term, academic_year)
    if deleted:
        flash('Result sheet deleted.', 'success')
    else:
        flash('Result sheet not found.', 'error')
    return back_to_card(student_id, term, academic_year)


@app.route('/results/<int:student_id>/attendance')
def attendance_autofill(student_id):
    role, viewer_id = current_viewer()
    try:
        term, academic_year = selected_period()
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    try:
        counts = result_service.attendance_autofill(role, viewer_id, student_id, term, academic_year)
    except ResultAccessError as exc:
        return jsonify({'error': str(exc)}), 403
    except ResultStoreError:
        return jsonify({'error': 'Could not reach the results database. Please try again.'}), 503
    return jsonify(counts)


@app.route('/results/<int:student_id>/print')
def print_result_card(student_id):
    role, viewer_id = current_viewer()
    try:
        term, academic_year = selected_period()
    except ValueError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('results_index'))

    card = result_service.build_card(role, viewer_id, student_id, term, academic_year)
    if card is None:
        flash(f'The {term} {academic_year} result has not been published yet.', 'error')
        return redirect(url_for('results_index', term=term, academic_year=academic_year))

    title = f"Result - {card['student']['name']} - {term} {academic_year}"
    job = PrintJob(title, [card], timeout=PRINT_RENDER_TIMEOUT)
    surface = job.run(open_print_surface)
    return surface.response()


@app.route('/results/print-batch', methods=['POST'])
def print_result_batch():
    role, viewer_id = current_viewer()
    try:
        term, academic_year = selected_period(request.form, strict=True)
    except ValueError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('results_index'))

    class_id = request.form.get('class_id', type=int)
    try:
        student_ids = [int(v) for v in request.form.getlist('student_ids') if str(v).strip()]
    except ValueError:
        student_ids = []
    if not class_id or not student_ids:
        flash('Select at least one student to print.', 'error')
        return redirect(url_for('results_index', class_id=class_id, term=term, academic_year=academic_year))

    cards = result_service.build_batch(role, viewer_id, class_id, student_ids, term, academic_year)
    job = PrintJob(f"Results - {term} {academic_year}", cards, timeout=PRINT_RENDER_TIMEOUT)
    surface = job.run(open_print_surface)
    logging.info("Batch print of %d card(s) for class %s by %s", job.page_count, class_id, viewer_id)
    return surface.response()


@app.route('/grades', methods=['POST'])
def record_grade():
    role, viewer_id = current_viewer()
    form = AssessmentForm()
    record, err = validate_assessment_entry(form)
    if err:
        flash(err, 'error')
        return redirect(request.referrer or url_for('results_index'))
    try:
        parse_academic_year(record['academic_year'])
    except ValueError as exc:
        flash(str(exc), 'error')
        return redirect(request.referrer or url_for('results_index'))

    result_service.record_grade(role, viewer_id, record)
    flash(f"{record['assessment_type']} score saved for {record['subject']}.", 'success')
    return back_to_card(record['student_id'], record['term'], record['academic_year'])

# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
