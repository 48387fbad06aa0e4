"""
Day-keyed ledgers for exercise completions and wellbeing check-ins.

Both ledgers upsert on their natural key (one completion per exercise,
patient and day; one check-in per patient and day). They flush but never
commit: the caller owns the transaction.
"""

from datetime import date, timedelta
from typing import List

from sqlalchemy import func
from sqlalchemy.sql.elements import ColumnElement

from moveify.errors import InvalidCompletionDate, ValidationError
from moveify.models import CheckIn, CompletionRecord, PrescribedExercise


def _check_range(name, value, low, high):
    if value is None:
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')
    if not low <= value <= high:
        raise ValidationError(f'{name} must be between {low} and {high}')
    return value


class CompletionQuery:
    """Completion filters collected as SQL clauses, applied in one go"""

    def __init__(self):
        self.clauses: List[ColumnElement] = []

    def for_patient(self, patient_id):
        if patient_id is not None:
            self.clauses.append(CompletionRecord.patient_id == patient_id)
        return self

    def for_exercises(self, exercise_ids):
        self.clauses.append(CompletionRecord.exercise_id.in_(list(exercise_ids)))
        return self

    def between(self, start: date = None, end: date = None):
        if start is not None:
            self.clauses.append(CompletionRecord.completion_date >= start)
        if end is not None:
            self.clauses.append(CompletionRecord.completion_date <= end)
        return self

    def with_effort(self):
        self.clauses.append(CompletionRecord.effort_rating.isnot(None))
        return self

    def with_pain(self):
        self.clauses.append(CompletionRecord.pain_level.isnot(None))
        return self

    def with_weight(self):
        self.clauses.append(CompletionRecord.weight_performed.isnot(None))
        return self


class CompletionLedger:

    def __init__(self, session):
        self.session = session

    def record(self, exercise: PrescribedExercise, patient_id: int, day: date, sets_performed=None,
               reps_performed=None, weight_performed=None, effort_rating=None, pain_level=None,
               notes=None) -> CompletionRecord:
        """Logs (or overwrites) the exercise for that day"""
        program = exercise.program
        if day < program.effective_start_date:
            raise InvalidCompletionDate(
                f'Cannot log {day.isoformat()}: program starts on {program.effective_start_date.isoformat()}'
            )

        effort_rating = _check_range('effort_rating', effort_rating, 1, 10)
        pain_level = _check_range('pain_level', pain_level, 0, 10)

        completion = self.session.query(CompletionRecord).filter_by(
            exercise_id=exercise.id,
            patient_id=patient_id,
            completion_date=day,
        ).first()
        if not completion:
            completion = CompletionRecord(exercise_id=exercise.id, patient_id=patient_id, completion_date=day)
            self.session.add(completion)

        completion.sets_performed = sets_performed
        completion.reps_performed = reps_performed
        completion.weight_performed = weight_performed
        completion.effort_rating = effort_rating
        completion.pain_level = pain_level
        completion.notes = notes

        self.session.flush()
        return completion

    def remove(self, exercise_id: int, patient_id: int, day: date) -> bool:
        deleted = self.session.query(CompletionRecord).filter_by(
            exercise_id=exercise_id,
            patient_id=patient_id,
            completion_date=day,
        ).delete()
        return deleted > 0

    def find(self, query: CompletionQuery) -> List[CompletionRecord]:
        return self.session.query(CompletionRecord).filter(*query.clauses).order_by(
            CompletionRecord.completion_date, CompletionRecord.id
        ).all()

    def counts_by_day(self, query: CompletionQuery) -> dict:
        rows = self.session.query(
            CompletionRecord.completion_date,
            func.count(CompletionRecord.id),
        ).filter(*query.clauses).group_by(CompletionRecord.completion_date).all()
        return {day: count for day, count in rows}


class CheckInLedger:

    def __init__(self, session):
        self.session = session

    def submit(self, patient_id: int, day: date, overall_feeling, general_pain=None, energy_level=None,
               sleep_quality=None, notes=None) -> CheckIn:
        if overall_feeling is None:
            raise ValidationError('overall_feeling is required')

        check_in = self.session.query(CheckIn).filter_by(patient_id=patient_id, check_in_date=day).first()
        if not check_in:
            check_in = CheckIn(patient_id=patient_id, check_in_date=day)
            self.session.add(check_in)

        check_in.overall_feeling = _check_range('overall_feeling', overall_feeling, 1, 5)
        check_in.general_pain = _check_range('general_pain', general_pain, 0, 10)
        check_in.energy_level = _check_range('energy_level', energy_level, 1, 5)
        check_in.sleep_quality = _check_range('sleep_quality', sleep_quality, 1, 5)
        check_in.notes = notes

        self.session.flush()
        return check_in

    def for_day(self, patient_id: int, day: date):
        return self.session.query(CheckIn).filter_by(patient_id=patient_id, check_in_date=day).first()

    def between(self, patient_id: int, start: date, end: date) -> List[CheckIn]:
        return self.session.query(CheckIn).filter(
            CheckIn.patient_id == patient_id,
            CheckIn.check_in_date >= start,
            CheckIn.check_in_date <= end,
        ).order_by(CheckIn.check_in_date).all()

    def history(self, patient_id: int, days: int = 30, today: date = None) -> List[CheckIn]:
        """Most recent first"""
        today = today or date.today()
        return list(reversed(self.between(patient_id, today - timedelta(days=days - 1), today)))

    def averages(self, patient_id: int, start: date, end: date) -> dict:
        """Per-field means with their sample counts (None mean when no samples)"""
        row = self.session.query(
            func.count(CheckIn.id),
            func.avg(CheckIn.overall_feeling), func.count(CheckIn.overall_feeling),
            func.avg(CheckIn.general_pain), func.count(CheckIn.general_pain),
            func.avg(CheckIn.energy_level), func.count(CheckIn.energy_level),
            func.avg(CheckIn.sleep_quality), func.count(CheckIn.sleep_quality),
        ).filter(
            CheckIn.patient_id == patient_id,
            CheckIn.check_in_date >= start,
            CheckIn.check_in_date <= end,
        ).one()

        def _mean(value):
            return round(float(value), 2) if value is not None else None

        return {
            'count': row[0],
            'overall_feeling': (_mean(row[1]), row[2]),
            'general_pain': (_mean(row[3]), row[4]),
            'energy_level': (_mean(row[5]), row[6]),
            'sleep_quality': (_mean(row[7]), row[8]),
        }
