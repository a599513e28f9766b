"""Flask-WTF forms for result sheet and grade entry."""

from flask_wtf import FlaskForm
from wtforms import BooleanField, DateField, FloatField, IntegerField, SelectField, StringField, TextAreaField, validators

from result_engine import TERMS
from result_store import BEHAVIOR_TRAITS

RATING_CHOICES = [(5, '5 - Excellent'), (4, '4 - Very Good'), (3, '3 - Good'), (2, '2 - Fair'), (1, '1 - Poor')]


def _rating_field(label):
    return SelectField(label, coerce=int, choices=RATING_CHOICES, default=3)


def _count_field(label):
    return IntegerField(label, default=0, validators=[validators.Optional(), validators.NumberRange(min=0, max=366)])


class ResultSheetForm(FlaskForm):
    teacher_comment = TextAreaField("Class Teacher's Comment", validators=[validators.Length(max=1000)])
    principal_comment = TextAreaField("Head Teacher's Comment", validators=[validators.Length(max=1000)])
    punctuality = _rating_field('Punctuality')
    neatness = _rating_field('Neatness')
    honesty = _rating_field('Honesty')
    cooperation = _rating_field('Cooperation')
    attentiveness = _rating_field('Attentiveness')
    politeness = _rating_field('Politeness')
    days_present = _count_field('Days Present')
    days_absent = _count_field('Days Absent')
    total_school_days = _count_field('Days School Opened')
    next_term_begins = DateField('Next Term Begins', validators=[validators.Optional()])
    next_term_fees = StringField('Next Term Fees', validators=[validators.Optional(), validators.Length(max=100)])
    is_published = BooleanField('Publish to parents and students')

    def validate_total_school_days(self, field):
        total = field.data or 0
        if total and (self.days_present.data or 0) + (self.days_absent.data or 0) > total:
            raise validators.ValidationError('Present and absent days cannot exceed days school opened.')

    def to_meta(self):
        meta = {
            'teacher_comment': (self.teacher_comment.data or '').strip(),
            'principal_comment': (self.principal_comment.data or '').strip(),
            'days_present': self.days_present.data or 0,
            'days_absent': self.days_absent.data or 0,
            'total_school_days': self.total_school_days.data or 0,
            'next_term_begins': self.next_term_begins.data.isoformat() if self.next_term_begins.data else '',
            'next_term_fees': (self.next_term_fees.data or '').strip(),
            'is_published': bool(self.is_published.data),
        }
        for trait in BEHAVIOR_TRAITS:
            meta[trait] = getattr(self, trait).data
        return meta


class AssessmentForm(FlaskForm):
    student_id = IntegerField('Student', validators=[validators.DataRequired()])
    subject = StringField('Subject', validators=[validators.DataRequired(), validators.Length(max=100)])
    assessment_type = StringField('Assessment', validators=[validators.DataRequired(), validators.Length(max=100)])
    score = FloatField('Score', validators=[validators.InputRequired(), validators.NumberRange(min=0)])
    max_score = FloatField('Max Score', default=100, validators=[validators.InputRequired(), validators.NumberRange(min=1)])
    term = SelectField('Term', choices=[(t, t) for t in TERMS])
    academic_year = StringField('Academic Year', validators=[validators.DataRequired()])

    def validate_score(self, field):
        if field.data is not None and self.max_score.data is not None and field.data > self.max_score.data:
            raise validators.ValidationError('Score cannot exceed max score')


def validate_assessment_entry(form):
    """Return (record, None) for a valid submission, else (None, first error message)."""
    if not form.validate():
        for field_errors in form.errors.values():
            if field_errors:
                return None, field_errors[0]
        return None, 'Invalid grade entry.'
    record = {
        'student_id': form.student_id.data,
        'subject': ' '.join(form.subject.data.split()),
        'assessment_type': form.assessment_type.data.strip(),
        'score': form.score.data,
        'max_score': form.max_score.data,
        'term': form.term.data,
        'academic_year': form.academic_year.data.strip(),
    }
    return record, None
