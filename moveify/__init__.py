"""
Moveify - adaptive periodization and adherence analytics API
"""

import logging
from datetime import datetime, date

from flask import Flask, jsonify, request
from flask_cors import CORS

from config import Config
from moveify.analytics import AdherenceAnalytics
from moveify.auth import clinician_required, require_patient_access, token_required
from moveify.checkins import analyze_check_in
from moveify.cycle import cycle_to_dict
from moveify.errors import Forbidden, MoveifyError, ValidationError
from moveify.flags import FlagBoard
from moveify.ledger import CheckInLedger, CompletionLedger
from moveify.metrics import default_window, weekly_metrics
from moveify.models import (
    db, Program, PrescribedExercise, CompletionRecord, CheckIn, ClinicianFlag, ProgressionLogEntry,
)
from moveify.policy import Policy
from moveify.progression import ProgressionEngine
from moveify.schedule import Weekday
from moveify.store import ProgramLocks, ProgramStore

logger = logging.getLogger(__name__)


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Init extensions
    db.init_app(app)
    CORS(app)

    app.extensions['moveify'] = {
        'policy': Policy.from_config(app.config),
        'locks': ProgramLocks(),
    }

    with app.app_context():
        db.create_all()

    def policy():
        return app.extensions['moveify']['policy']

    def engine():
        return ProgressionEngine(db.session, policy(), app.extensions['moveify']['locks'])

    def store():
        return ProgramStore(db.session, policy())

    @app.errorhandler(MoveifyError)
    def handle_domain_error(e):
        return jsonify({'error': e.message}), e.status_code

    # ========== HEALTH CHECK ==========

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok', 'timestamp': datetime.utcnow().isoformat()})

    # ========== PROGRAMS ==========

    @app.route('/api/patients/<int:patient_id>/programs', methods=['POST'])
    @token_required
    @clinician_required
    def create_program(current_user, patient_id):
        """Create a program with its exercises and starting cycle"""
        data = request.get_json() or {}

        program = store().create_program(
            patient_id=patient_id,
            clinician_id=current_user.id,
            name=data.get('name'),
            exercises=data.get('exercises', []),
            frequency=data.get('frequency', []),
            start_date=_parse_date(data.get('start_date'), 'start_date'),
            duration=data.get('duration', 'ongoing'),
            custom_end_date=_parse_date(data.get('custom_end_date'), 'custom_end_date'),
            block_type=data.get('block_type', 'introductory'),
            track_actual_performance=data.get('track_actual_performance', True),
            track_effort=data.get('track_effort', False),
            track_pain=data.get('track_pain', False),
        )
        return jsonify(_program_to_dict(program)), 201

    @app.route('/api/patients/<int:patient_id>/programs', methods=['GET'])
    @token_required
    def list_programs(current_user, patient_id):
        """Active programs of a patient"""
        require_patient_access(current_user, patient_id)
        return jsonify([_program_to_dict(p) for p in store().active_programs(patient_id)])

    @app.route('/api/programs/<int:program_id>', methods=['GET'])
    @token_required
    def get_program(current_user, program_id):
        program = store().get(program_id)
        require_patient_access(current_user, program.patient_id)
        return jsonify(_program_to_dict(program))

    @app.route('/api/programs/<int:program_id>', methods=['DELETE'])
    @token_required
    @clinician_required
    def delete_program(current_user, program_id):
        """Delete a program with everything hanging off it"""
        locks = app.extensions['moveify']['locks']
        with locks.for_program(program_id):
            store().delete_program(program_id)
        locks.discard(program_id)
        return jsonify({'success': True, 'program_id': program_id})

    # ========== EXERCISES ==========

    @app.route('/api/exercises/<int:exercise_id>/override', methods=['PATCH'])
    @token_required
    @clinician_required
    def override_exercise(current_user, exercise_id):
        """Manual change of the current prescription"""
        data = request.get_json() or {}
        exercise = store().override_exercise(
            exercise_id,
            sets=data.get('sets'),
            reps=data.get('reps'),
            weight=data.get('weight'),
            auto_adjust=data.get('auto_adjust'),
            instructions=data.get('instructions'),
        )
        return jsonify(_exercise_to_dict(exercise))

    @app.route('/api/exercises/<int:exercise_id>/complete', methods=['PATCH'])
    @token_required
    def complete_exercise(current_user, exercise_id):
        """Log (or un-log with completed=false) an exercise for a day"""
        data = request.get_json() or {}
        exercise = store().get_exercise(exercise_id)
        patient_id = exercise.program.patient_id
        require_patient_access(current_user, patient_id)

        day = _parse_date(data.get('date'), 'date') or date.today()
        ledger = CompletionLedger(db.session)

        if data.get('completed', True) is False:
            removed = ledger.remove(exercise.id, patient_id, day)
            db.session.commit()
            return jsonify({'removed': removed, 'exercise_id': exercise.id, 'date': day.isoformat()})

        try:
            completion = ledger.record(
                exercise,
                patient_id,
                day,
                sets_performed=data.get('sets_performed'),
                reps_performed=data.get('reps_performed'),
                weight_performed=data.get('weight_performed'),
                effort_rating=data.get('effort_rating'),
                pain_level=data.get('pain_level'),
                notes=data.get('notes'),
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        return jsonify(_completion_to_dict(completion))

    @app.route('/api/exercises/<int:exercise_id>/metrics', methods=['GET'])
    @token_required
    def exercise_metrics(current_user, exercise_id):
        """Metrics the next progression trigger would see (or an explicit start/end window)"""
        exercise = store().get_exercise(exercise_id)
        patient_id = exercise.program.patient_id
        require_patient_access(current_user, patient_id)

        today = _parse_date(request.args.get('end'), 'end') or date.today()
        start = _parse_date(request.args.get('start'), 'start')
        if start is None:
            start, today = default_window(exercise, exercise.program.cycle, today, policy())

        metrics = weekly_metrics(db.session, exercise, patient_id, start, today)
        return jsonify(metrics.to_dict())

    # ========== CHECK-INS ==========

    @app.route('/api/check-ins', methods=['POST'])
    @token_required
    def submit_check_in(current_user):
        """Daily wellbeing check-in (one per day, resubmitting overwrites)"""
        if current_user.is_clinician:
            raise Forbidden('Only patients submit check-ins')

        data = request.get_json() or {}
        day = _parse_date(data.get('date'), 'date') or date.today()

        try:
            check_in = CheckInLedger(db.session).submit(
                current_user.id,
                day,
                overall_feeling=data.get('overall_feeling'),
                general_pain=data.get('general_pain'),
                energy_level=data.get('energy_level'),
                sleep_quality=data.get('sleep_quality'),
                notes=data.get('notes'),
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        return jsonify({'check_in': _check_in_to_dict(check_in), 'warnings': analyze_check_in(check_in)})

    @app.route('/api/check-ins/today', methods=['GET'])
    @token_required
    def today_check_in(current_user):
        check_in = CheckInLedger(db.session).for_day(current_user.id, date.today())
        if not check_in:
            return jsonify({'check_in': None, 'warnings': []})
        return jsonify({'check_in': _check_in_to_dict(check_in), 'warnings': analyze_check_in(check_in)})

    @app.route('/api/check-ins/history', methods=['GET'])
    @token_required
    def check_in_history(current_user):
        """Check-ins of the last N days, most recent first"""
        patient_id = request.args.get('patient_id', current_user.id, type=int)
        require_patient_access(current_user, patient_id)
        days = request.args.get('days', app.config['ANALYTICS_DEFAULT_DAYS'], type=int)

        check_ins = CheckInLedger(db.session).history(patient_id, days=max(days, 1))
        return jsonify([_check_in_to_dict(c) for c in check_ins])

    # ========== ANALYTICS ==========

    @app.route('/api/patients/<int:patient_id>/analytics', methods=['GET'])
    @token_required
    def patient_analytics(current_user, patient_id):
        """Adherence dashboard across the patient's active programs"""
        require_patient_access(current_user, patient_id)
        days = request.args.get('days', app.config['ANALYTICS_DEFAULT_DAYS'], type=int)
        today = _parse_date(request.args.get('date'), 'date')

        result = AdherenceAnalytics(db.session, policy()).patient_analytics(patient_id, days, today)
        return jsonify(result)

    # ========== PERIODIZATION ==========

    @app.route('/api/programs/<int:program_id>/progress', methods=['POST'])
    @token_required
    @clinician_required
    def progress_program(current_user, program_id):
        """Run the progression trigger: adjust prescriptions, advance one week"""
        data = request.get_json(silent=True) or {}
        summary = engine().progress_program(program_id, _parse_date(data.get('date'), 'date'))
        return jsonify(summary)

    @app.route('/api/programs/<int:program_id>/adjust-weight', methods=['POST'])
    @token_required
    @clinician_required
    def adjust_weight(current_user, program_id):
        data = request.get_json(silent=True) or {}
        return jsonify(engine().adjust_weight_by_effort(program_id, _parse_date(data.get('date'), 'date')))

    @app.route('/api/programs/<int:program_id>/cycle', methods=['GET'])
    @token_required
    def get_cycle(current_user, program_id):
        program = store().get(program_id)
        require_patient_access(current_user, program.patient_id)
        return jsonify(cycle_to_dict(engine().current_cycle(program_id)))

    @app.route('/api/programs/<int:program_id>/cycle', methods=['PATCH'])
    @token_required
    @clinician_required
    def override_cycle(current_user, program_id):
        """Manually advance, hold or regress the cycle week"""
        data = request.get_json(silent=True) or {}
        result = engine().override_cycle(program_id, data.get('action'), _parse_date(data.get('date'), 'date'))
        return jsonify(result)

    @app.route('/api/programs/<int:program_id>/progression-history', methods=['GET'])
    @token_required
    def progression_history(current_user, program_id):
        program = store().get(program_id)
        require_patient_access(current_user, program.patient_id)
        limit = request.args.get('limit', app.config['PROGRESSION_HISTORY_LIMIT'], type=int)

        entries = engine().progression_history(program_id, limit=max(limit, 1))
        return jsonify([_log_entry_to_dict(e) for e in entries])

    # ========== CLINICIAN FLAGS ==========

    @app.route('/api/flags', methods=['GET'])
    @token_required
    @clinician_required
    def list_flags(current_user):
        """Unresolved flags on the clinician's programs (include_resolved=1 for all)"""
        patient_id = request.args.get('patient_id', type=int)
        include_resolved = request.args.get('include_resolved', '').lower() in ('1', 'true')

        flags = FlagBoard(db.session).for_clinician(current_user.id, patient_id, include_resolved)
        return jsonify({'flags': [_flag_to_dict(f) for f in flags]})

    @app.route('/api/flags/<int:flag_id>/resolve', methods=['PATCH'])
    @token_required
    @clinician_required
    def resolve_flag(current_user, flag_id):
        flag = FlagBoard(db.session).resolve(flag_id, resolved_by=current_user.id)
        return jsonify(_flag_to_dict(flag))

    return app


def _parse_date(value, field):
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {field}: expected YYYY-MM-DD')


def _iso(value):
    return value.isoformat() if value else None


def _exercise_to_dict(e: PrescribedExercise) -> dict:
    return {
        'id': e.id,
        'program_id': e.program_id,
        'position': e.position,
        'name': e.name,
        'category': e.category,
        'instructions': e.instructions,
        'sets': e.sets,
        'reps': e.reps,
        'weight': e.weight,
        'baseline_sets': e.baseline_sets,
        'baseline_reps': e.baseline_reps,
        'auto_adjust': e.auto_adjust,
        'last_adjusted_date': _iso(e.last_adjusted_date),
    }


def _program_to_dict(p: Program) -> dict:
    """Program with its exercises (in order) and current cycle"""
    return {
        'id': p.id,
        'patient_id': p.patient_id,
        'clinician_id': p.clinician_id,
        'name': p.name,
        'start_date': _iso(p.effective_start_date),
        'end_date': _iso(p.end_date),
        'frequency': [d.value for d in Weekday if d in p.get_schedule()],
        'duration': p.duration,
        'custom_end_date': _iso(p.custom_end_date),
        'tracking': {
            'actual_performance': p.track_actual_performance,
            'effort': p.track_effort,
            'pain': p.track_pain,
        },
        'is_active': p.is_active,
        'exercises': [_exercise_to_dict(e) for e in p.exercises],
        'cycle': cycle_to_dict(p.cycle) if p.cycle else None,
        'created_at': _iso(p.created_at),
    }


def _completion_to_dict(c: CompletionRecord) -> dict:
    return {
        'id': c.id,
        'exercise_id': c.exercise_id,
        'patient_id': c.patient_id,
        'date': c.completion_date.isoformat(),
        'sets_performed': c.sets_performed,
        'reps_performed': c.reps_performed,
        'weight_performed': c.weight_performed,
        'effort_rating': c.effort_rating,
        'pain_level': c.pain_level,
        'notes': c.notes,
    }


def _check_in_to_dict(c: CheckIn) -> dict:
    return {
        'id': c.id,
        'patient_id': c.patient_id,
        'date': c.check_in_date.isoformat(),
        'overall_feeling': c.overall_feeling,
        'general_pain': c.general_pain,
        'energy_level': c.energy_level,
        'sleep_quality': c.sleep_quality,
        'notes': c.notes,
        'created_at': _iso(c.created_at),
    }


def _log_entry_to_dict(e: ProgressionLogEntry) -> dict:
    return {
        'id': e.id,
        'exercise_id': e.exercise_id,
        'exercise_name': e.exercise.name if e.exercise else None,
        'program_id': e.program_id,
        'action': e.action,
        'previous_sets': e.previous_sets,
        'previous_reps': e.previous_reps,
        'new_sets': e.new_sets,
        'new_reps': e.new_reps,
        'previous_weight': e.previous_weight,
        'new_weight': e.new_weight,
        'reason': e.reason,
        'metrics': {
            'avg_effort': e.avg_effort,
            'avg_pain': e.avg_pain,
            'adherence': e.adherence,
            'completion_rate': e.completion_rate,
        },
        'week_in_cycle': e.week_in_cycle,
        'block_type': e.block_type,
        'adjusted_at': _iso(e.adjusted_at),
    }


def _flag_to_dict(f: ClinicianFlag) -> dict:
    return {
        'id': f.id,
        'program_id': f.program_id,
        'program_name': f.program.name if f.program else None,
        'patient_id': f.patient_id,
        'patient_name': f.program.patient.name if f.program else None,
        'flag_type': f.flag_type,
        'reason': f.reason,
        'flag_date': _iso(f.flag_date),
        'resolved': f.resolved,
        'resolved_at': _iso(f.resolved_at),
        'resolved_by': f.resolved_by,
        'created_at': _iso(f.created_at),
    }
