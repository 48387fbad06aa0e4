"""
Program storage: creation together with its cycle, manual overrides and
cascading deletes.
"""

import logging
import threading
from datetime import date

from moveify.cycle import (
    BlockType, DEFAULT_BASELINE_REPS, DEFAULT_BASELINE_SETS, initialize_cycle, prescription_for_week,
)
from moveify.errors import ExerciseNotFound, PatientNotFound, ProgramNotFound, ValidationError
from moveify.models import (
    ClinicianFlag, CompletionRecord, PrescribedExercise, Program, ProgressionLogEntry, User,
)
from moveify.policy import DEFAULT_POLICY
from moveify.schedule import duration_end_date, parse_mask

logger = logging.getLogger(__name__)


def _positive_int(name, value, default):
    if value is None or value == '':
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')
    if value < 1:
        raise ValidationError(f'{name} must be at least 1')
    return value


class ProgramLocks:
    """One lock per program id, shared by every request of the app"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def for_program(self, program_id) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(program_id, threading.Lock())

    def discard(self, program_id):
        with self._guard:
            self._locks.pop(program_id, None)


class ProgramStore:

    def __init__(self, session, policy=None):
        self.session = session
        self.policy = policy or DEFAULT_POLICY

    def create_program(self, patient_id, name, exercises, frequency, start_date: date = None,
                       duration='ongoing', custom_end_date: date = None, block_type='introductory',
                       track_actual_performance=True, track_effort=False, track_pain=False,
                       clinician_id=None, today: date = None) -> Program:
        """
        Creates the program, its exercises and its week-1 cycle in one
        transaction. Exercises start at the week-1 prescription of their
        baseline.
        """
        block_type = BlockType.parse(block_type)
        today = today or date.today()

        patient = self.session.get(User, patient_id)
        if not patient or patient.role != 'patient':
            raise PatientNotFound()
        if not name:
            raise ValidationError('Program name is required')
        if duration == 'custom' and not custom_end_date:
            raise ValidationError('custom_end_date is required for a custom duration')
        duration_end_date(start_date or today, duration, custom_end_date)

        try:
            program = Program(
                patient_id=patient_id,
                clinician_id=clinician_id,
                name=name,
                start_date=start_date or today,
                duration=duration or 'ongoing',
                custom_end_date=custom_end_date,
                track_actual_performance=track_actual_performance,
                track_effort=track_effort,
                track_pain=track_pain,
                is_active=True,
            )
            program.set_schedule(parse_mask(frequency))
            self.session.add(program)
            self.session.flush()

            for position, data in enumerate(exercises or []):
                if not data.get('name'):
                    raise ValidationError(f'Exercise #{position + 1} has no name')
                baseline_sets = _positive_int('sets', data.get('sets'), DEFAULT_BASELINE_SETS)
                baseline_reps = _positive_int('reps', data.get('reps'), DEFAULT_BASELINE_REPS)
                sets, reps = prescription_for_week(block_type, 1, baseline_sets, baseline_reps, self.policy)

                self.session.add(PrescribedExercise(
                    program_id=program.id,
                    position=position,
                    name=data['name'],
                    category=data.get('category'),
                    instructions=data.get('instructions'),
                    sets=sets,
                    reps=reps,
                    weight=float(data.get('weight') or 0),
                    baseline_sets=baseline_sets,
                    baseline_reps=baseline_reps,
                    auto_adjust=data.get('auto_adjust', True),
                ))

            self.session.add(initialize_cycle(program, block_type, today, self.policy))
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        logger.info(f'Created program {program.id} for patient {patient_id} ({block_type.value} block)')
        return program

    def get(self, program_id) -> Program:
        program = self.session.get(Program, program_id)
        if not program:
            raise ProgramNotFound()
        return program

    def get_exercise(self, exercise_id) -> PrescribedExercise:
        exercise = self.session.get(PrescribedExercise, exercise_id)
        if not exercise:
            raise ExerciseNotFound()
        return exercise

    def active_programs(self, patient_id):
        return self.session.query(Program).filter_by(patient_id=patient_id, is_active=True).order_by(
            Program.created_at, Program.id
        ).all()

    def override_exercise(self, exercise_id, sets=None, reps=None, weight=None, auto_adjust=None,
                          instructions=None, today: date = None) -> PrescribedExercise:
        """Clinician edit of the current prescription; baseline stays put"""
        exercise = self.get_exercise(exercise_id)

        if sets is not None:
            exercise.sets = _positive_int('sets', sets, exercise.sets)
        if reps is not None:
            exercise.reps = _positive_int('reps', reps, exercise.reps)
        if weight is not None:
            try:
                weight = float(weight)
            except (TypeError, ValueError):
                raise ValidationError('weight must be a number')
            if weight < 0:
                raise ValidationError('weight cannot be negative')
            exercise.weight = weight
        if auto_adjust is not None:
            exercise.auto_adjust = bool(auto_adjust)
        if instructions is not None:
            exercise.instructions = instructions
        if sets is not None or reps is not None:
            exercise.last_adjusted_date = today or date.today()

        self.session.commit()
        return exercise

    def delete_program(self, program_id):
        """Deletes the program with its exercises, completions, cycle, flags and log entries"""
        program = self.get(program_id)
        exercise_ids = [e.id for e in program.exercises]

        try:
            self.session.query(ProgressionLogEntry).filter(
                ProgressionLogEntry.program_id == program_id
            ).delete(synchronize_session=False)
            self.session.query(ClinicianFlag).filter(
                ClinicianFlag.program_id == program_id
            ).delete(synchronize_session=False)
            if exercise_ids:
                self.session.query(CompletionRecord).filter(
                    CompletionRecord.exercise_id.in_(exercise_ids)
                ).delete(synchronize_session=False)
            for exercise in program.exercises:
                self.session.delete(exercise)
            if program.cycle:
                self.session.delete(program.cycle)
            self.session.delete(program)
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        logger.info(f'Deleted program {program_id} ({len(exercise_ids)} exercises)')
