from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates
from datetime import datetime, date

from moveify.schedule import decode_mask, encode_mask, duration_end_date

db = SQLAlchemy()


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # clinician, patient

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    programs = db.relationship('Program', backref='patient', lazy='dynamic', foreign_keys='Program.patient_id')

    __table_args__ = (
        db.CheckConstraint("role IN ('clinician', 'patient')", name='ck_user_role'),
    )

    @property
    def is_clinician(self):
        return self.role == 'clinician'


class Program(db.Model):
    """Exercise program prescribed to one patient"""
    __tablename__ = 'programs'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    # Prescribing clinician, receives the program's flags
    clinician_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    name = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date)

    # Weekday mask (JSON array: ["Mon", "Wed", "Fri"])
    frequency = db.Column(db.Text, nullable=False, default='[]')

    # Duration policy: ongoing, 4weeks, 8weeks, ..., custom
    duration = db.Column(db.String(20), nullable=False, default='ongoing')
    custom_end_date = db.Column(db.Date)

    # Which performance dimensions the patient reports
    track_actual_performance = db.Column(db.Boolean, default=True)
    track_effort = db.Column(db.Boolean, default=False)
    track_pain = db.Column(db.Boolean, default=False)

    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    exercises = db.relationship('PrescribedExercise', backref='program', lazy='select',
                                order_by='PrescribedExercise.position')
    cycle = db.relationship('PeriodizationCycle', backref='program', uselist=False)

    def get_schedule(self):
        return decode_mask(self.frequency)

    def set_schedule(self, mask):
        self.frequency = encode_mask(mask)

    @property
    def effective_start_date(self) -> date:
        if self.start_date:
            return self.start_date
        return (self.created_at or datetime.utcnow()).date()

    @property
    def end_date(self):
        return duration_end_date(self.effective_start_date, self.duration, self.custom_end_date)

    def is_running_on(self, day: date) -> bool:
        """True if the day falls within the program's start/end dates"""
        if day < self.effective_start_date:
            return False
        end = self.end_date
        return end is None or day <= end


class PrescribedExercise(db.Model):
    """Exercise within a program: current prescription plus its fixed baseline"""
    __tablename__ = 'program_exercises'

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey('programs.id'), nullable=False)

    position = db.Column(db.Integer, nullable=False, default=0)

    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(100))
    instructions = db.Column(db.Text)

    # Current prescription
    sets = db.Column(db.Integer, nullable=False)
    reps = db.Column(db.Integer, nullable=False)
    weight = db.Column(db.Float, default=0)  # kg

    # Prescription as first written by the clinician, anchor for progression
    baseline_sets = db.Column(db.Integer, nullable=False)
    baseline_reps = db.Column(db.Integer, nullable=False)

    auto_adjust = db.Column(db.Boolean, default=True)
    last_adjusted_date = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @validates('baseline_sets', 'baseline_reps')
    def _freeze_baseline(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f'{key} cannot change once the exercise exists')
        return value


class PeriodizationCycle(db.Model):
    """Current training block and week of a program (mutated in place)"""
    __tablename__ = 'periodization_cycles'

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey('programs.id'), nullable=False, unique=True)

    block_type = db.Column(db.String(20), nullable=False)  # introductory, standard
    block_number = db.Column(db.Integer, nullable=False, default=1)
    block_start_date = db.Column(db.Date, nullable=False)
    current_week = db.Column(db.Integer, nullable=False, default=1)
    total_weeks = db.Column(db.Integer, nullable=False)
    intensity_multiplier = db.Column(db.Float, nullable=False, default=1.0)

    # Day of the last progression trigger
    last_progressed_date = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("block_type IN ('introductory', 'standard')", name='ck_cycle_block_type'),
        db.CheckConstraint('block_number >= 1', name='ck_cycle_block_number'),
        db.CheckConstraint('current_week >= 1 AND current_week <= total_weeks', name='ck_cycle_week'),
    )


class CompletionRecord(db.Model):
    """One logged exercise per patient per day"""
    __tablename__ = 'exercise_completions'

    id = db.Column(db.Integer, primary_key=True)
    exercise_id = db.Column(db.Integer, db.ForeignKey('program_exercises.id'), nullable=False)
    patient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    completion_date = db.Column(db.Date, nullable=False)

    # What was actually performed
    sets_performed = db.Column(db.Integer)
    reps_performed = db.Column(db.Integer)
    weight_performed = db.Column(db.Float)

    effort_rating = db.Column(db.Integer)  # 1-10
    pain_level = db.Column(db.Integer)  # 0-10
    notes = db.Column(db.Text)

    completed_at = db.Column(db.DateTime, default=datetime.utcnow)

    exercise = db.relationship('PrescribedExercise')

    __table_args__ = (
        db.UniqueConstraint('exercise_id', 'patient_id', 'completion_date', name='unique_exercise_patient_day'),
        db.CheckConstraint('effort_rating BETWEEN 1 AND 10', name='ck_completion_effort'),
        db.CheckConstraint('pain_level BETWEEN 0 AND 10', name='ck_completion_pain'),
    )


class CheckIn(db.Model):
    """Daily wellbeing check-in"""
    __tablename__ = 'daily_check_ins'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    check_in_date = db.Column(db.Date, nullable=False)

    overall_feeling = db.Column(db.Integer, nullable=False)  # 1-5
    general_pain = db.Column(db.Integer)  # 0-10
    energy_level = db.Column(db.Integer)  # 1-5
    sleep_quality = db.Column(db.Integer)  # 1-5
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('patient_id', 'check_in_date', name='unique_patient_check_in_day'),
        db.CheckConstraint('overall_feeling BETWEEN 1 AND 5', name='ck_check_in_feeling'),
        db.CheckConstraint('general_pain BETWEEN 0 AND 10', name='ck_check_in_pain'),
        db.CheckConstraint('energy_level BETWEEN 1 AND 5', name='ck_check_in_energy'),
        db.CheckConstraint('sleep_quality BETWEEN 1 AND 5', name='ck_check_in_sleep'),
    )


class ProgressionLogEntry(db.Model):
    """Audit trail of prescription changes made by the progression engine"""
    __tablename__ = 'exercise_progression_log'

    id = db.Column(db.Integer, primary_key=True)
    exercise_id = db.Column(db.Integer, db.ForeignKey('program_exercises.id'), nullable=False)
    program_id = db.Column(db.Integer, db.ForeignKey('programs.id'), nullable=False)

    # increase, decrease, weight_increase, weight_decrease, manual_advance, manual_regress
    action = db.Column(db.String(20), nullable=False)

    previous_sets = db.Column(db.Integer)
    previous_reps = db.Column(db.Integer)
    new_sets = db.Column(db.Integer, nullable=False)
    new_reps = db.Column(db.Integer, nullable=False)
    previous_weight = db.Column(db.Float)
    new_weight = db.Column(db.Float)

    reason = db.Column(db.Text, nullable=False)

    # Metric snapshot behind the decision
    avg_effort = db.Column(db.Float)
    avg_pain = db.Column(db.Float)
    adherence = db.Column(db.Float)
    completion_rate = db.Column(db.Float)
    week_in_cycle = db.Column(db.Integer)
    block_type = db.Column(db.String(20))

    adjusted_at = db.Column(db.DateTime, default=datetime.utcnow)

    exercise = db.relationship('PrescribedExercise')


class ClinicianFlag(db.Model):
    """Event raised by the progression engine for the prescribing clinician to review"""
    __tablename__ = 'clinician_flags'

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey('programs.id'), nullable=False)
    patient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    flag_type = db.Column(db.String(30), nullable=False)  # pain_flare, performance_hold, block_complete
    reason = db.Column(db.Text, nullable=False)
    flag_date = db.Column(db.Date, nullable=False)

    resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime)
    resolved_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    program = db.relationship('Program')

    __table_args__ = (
        db.CheckConstraint(
            "flag_type IN ('pain_flare', 'performance_hold', 'block_complete')", name='ck_flag_type'
        ),
    )
