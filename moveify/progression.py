"""
Progression engine: decides, once per trigger, whether each exercise of a
program steps up, holds or steps back, then advances the cycle one week.
"""

import logging
import math
from datetime import date, timedelta

from moveify.cycle import (
    BlockType, advance_week, intensity_for, next_position, prescription_for_position, previous_position,
)
from moveify.errors import CycleNotFound, ProgramNotFound, ValidationError
from moveify.flags import BLOCK_COMPLETE, PAIN_FLARE, PERFORMANCE_HOLD, FlagBoard
from moveify.metrics import default_window, weekly_metrics
from moveify.models import PeriodizationCycle, Program, ProgressionLogEntry
from moveify.policy import DEFAULT_POLICY
from moveify.store import ProgramLocks

logger = logging.getLogger(__name__)

HOLD = 'hold'
INCREASE = 'increase'
DECREASE = 'decrease'
WEIGHT_INCREASE = 'weight_increase'
WEIGHT_DECREASE = 'weight_decrease'
MANUAL_ADVANCE = 'manual_advance'
MANUAL_REGRESS = 'manual_regress'

OVERRIDE_ACTIONS = ('advance', 'hold', 'regress')


def _describe(block_type, week, block_number):
    if block_type is BlockType.INTRODUCTORY:
        return f'introductory week {week}'
    return f'standard block {block_number} week {week}'


def _pain_summary(metrics):
    return f'exercise: {metrics.avg_exercise_pain}/10, general: {metrics.avg_general_pain}/10'


def _round_to(value, step):
    # half-up, so 20.25 -> 20.5
    return math.floor(value / step + 0.5) * step


class ProgressionEngine:
    """Runs progression triggers for programs, one transaction per trigger"""

    def __init__(self, session, policy=None, locks=None):
        self.session = session
        self.policy = policy or DEFAULT_POLICY
        self.locks = locks or ProgramLocks()

    # ========== LOOKUPS ==========

    def _load(self, program_id, lock_cycle=False):
        program = self.session.get(Program, program_id)
        if not program:
            raise ProgramNotFound()

        query = self.session.query(PeriodizationCycle).filter_by(program_id=program_id)
        if lock_cycle:
            query = query.with_for_update()
        cycle = query.first()
        if not cycle:
            raise CycleNotFound()
        return program, cycle

    def current_cycle(self, program_id) -> PeriodizationCycle:
        return self._load(program_id)[1]

    def progression_history(self, program_id, limit=50):
        """Log entries of a program, most recent first"""
        if not self.session.get(Program, program_id):
            raise ProgramNotFound()
        return self.session.query(ProgressionLogEntry).filter_by(program_id=program_id).order_by(
            ProgressionLogEntry.adjusted_at.desc(), ProgressionLogEntry.id.desc()
        ).limit(limit).all()

    # ========== PROGRESSION ==========

    def progress_program(self, program_id, today: date = None) -> dict:
        """
        Evaluates every auto-adjusting exercise, applies the decisions and
        advances the cycle exactly once. All writes are committed together;
        on failure nothing is kept and the error propagates.
        """
        today = today or date.today()

        with self.locks.for_program(program_id):
            program, cycle = self._load(program_id, lock_cycle=True)

            previous_week = cycle.current_week
            previous_block_type = cycle.block_type

            try:
                adjustments = []
                skipped = []
                flares = []
                holds = []
                for exercise in program.exercises:
                    if not exercise.auto_adjust:
                        skipped.append({
                            'exercise_id': exercise.id,
                            'exercise_name': exercise.name,
                            'reason': 'Auto-adjust disabled',
                        })
                        continue
                    adjustments.append(self._progress_exercise(program, cycle, exercise, today, flares, holds))

                flags = FlagBoard(self.session)
                if flares:
                    flags.raise_flag(program, PAIN_FLARE, f'Pain flare detected: {"; ".join(flares)}', today)
                if holds:
                    week = _describe(BlockType.parse(cycle.block_type), cycle.current_week, cycle.block_number)
                    flags.raise_flag(
                        program, PERFORMANCE_HOLD, f'Performance hold at {week}: {"; ".join(holds)}',
                        today, resolved=True,
                    )

                self._advance(program, cycle, today)
                self.session.commit()

            except Exception:
                self.session.rollback()
                logger.exception(f'Progression failed for program {program_id}, rolled back')
                raise

            changed = sum(1 for a in adjustments if a['action'] != HOLD)
            logger.info(
                f'Program {program_id}: week {previous_week} -> {cycle.current_week} '
                f'({cycle.block_type}), {changed}/{len(adjustments)} exercises changed'
            )

            return {
                'program_id': program.id,
                'previous_week': previous_week,
                'new_week': cycle.current_week,
                'previous_block_type': previous_block_type,
                'block_type': cycle.block_type,
                'block_number': cycle.block_number,
                'intensity_multiplier': cycle.intensity_multiplier,
                'adjustments': adjustments,
                'skipped': skipped,
            }

    def _advance(self, program, cycle, today):
        finished = (BlockType.parse(cycle.block_type), cycle.block_number, cycle.total_weeks)
        advance_week(cycle, today, self.policy)
        if cycle.current_week == 1:
            block_type, block_number, total_weeks = finished
            FlagBoard(self.session).raise_flag(
                program, BLOCK_COMPLETE,
                f'Block complete: {block_type.value} block {block_number} finished after {total_weeks} weeks, '
                f'now {_describe(BlockType.parse(cycle.block_type), 1, cycle.block_number)}. Please review the program.',
                today,
            )

    def _progress_exercise(self, program, cycle, exercise, today, flares, holds):
        """Decides and applies one exercise; pain flares and gate holds are collected for flags"""
        window_start, window_end = default_window(exercise, cycle, today, self.policy)
        metrics = weekly_metrics(self.session, exercise, program.patient_id, window_start, window_end)

        current = (exercise.sets, exercise.reps)

        if metrics.is_empty:
            action, new, reason = HOLD, current, 'No new completion data since last adjustment'

        elif self._high_pain(program, metrics):
            action, new, reason = self._decrease(exercise, cycle, metrics)
            flares.append(f'{exercise.name} ({_pain_summary(metrics)})')

        else:
            failed = self.failed_gates(program, metrics, cycle.block_type)
            if failed:
                action, new, reason = HOLD, current, f'Maintaining current level, failed gates: {", ".join(failed)}'
                holds.append(f'{exercise.name} ({", ".join(failed)})')
            else:
                action, new, reason = self._increase(exercise, cycle)

        if action != HOLD:
            exercise.sets, exercise.reps = new
            exercise.last_adjusted_date = today
            self.session.add(ProgressionLogEntry(
                exercise_id=exercise.id,
                program_id=program.id,
                action=action,
                previous_sets=current[0],
                previous_reps=current[1],
                new_sets=new[0],
                new_reps=new[1],
                reason=reason,
                avg_effort=metrics.avg_effort if metrics.effort_samples else None,
                avg_pain=metrics.avg_exercise_pain if metrics.pain_samples else None,
                adherence=metrics.adherence,
                completion_rate=metrics.completion_rate,
                week_in_cycle=cycle.current_week,
                block_type=cycle.block_type,
            ))

        return {
            'exercise_id': exercise.id,
            'exercise_name': exercise.name,
            'action': action,
            'previous_sets': current[0],
            'previous_reps': current[1],
            'new_sets': new[0],
            'new_reps': new[1],
            'reason': reason,
            'metrics': metrics.to_dict(),
        }

    def _high_pain(self, program, metrics) -> bool:
        exercise_pain = (
            program.track_pain and metrics.pain_samples
            and metrics.avg_exercise_pain >= self.policy.high_exercise_pain
        )
        general_pain = metrics.general_pain_samples and metrics.avg_general_pain >= self.policy.high_general_pain
        return bool(exercise_pain or general_pain)

    def failed_gates(self, program, metrics, block_type) -> list:
        """Names of the gates the metrics fail; untracked or unsampled signals pass"""
        gates = self.policy.gates_for(block_type)
        failed = []

        if metrics.adherence < gates['adherence']:
            failed.append(f'adherence {metrics.adherence:.0%} < {gates["adherence"]:.0%}')
        if metrics.completion_rate < gates['completion_rate']:
            failed.append(f'completion rate {metrics.completion_rate:.0%} < {gates["completion_rate"]:.0%}')
        if program.track_effort and metrics.effort_samples and metrics.avg_effort > gates['avg_effort']:
            failed.append(f'effort {metrics.avg_effort} > {gates["avg_effort"]}')
        if program.track_pain and metrics.pain_samples and metrics.avg_exercise_pain > gates['avg_exercise_pain']:
            failed.append(f'exercise pain {metrics.avg_exercise_pain} > {gates["avg_exercise_pain"]}')
        if metrics.feeling_samples and metrics.avg_overall_feeling < gates['avg_overall_feeling']:
            failed.append(f'overall feeling {metrics.avg_overall_feeling} < {gates["avg_overall_feeling"]}')
        if metrics.general_pain_samples and metrics.avg_general_pain > gates['avg_general_pain']:
            failed.append(f'general pain {metrics.avg_general_pain} > {gates["avg_general_pain"]}')

        return failed

    def _target(self, exercise, position):
        block_type, week, block_number = position
        return prescription_for_position(
            block_type, week, block_number, exercise.baseline_sets, exercise.baseline_reps, self.policy
        )

    def _increase(self, exercise, cycle):
        position = next_position(cycle)
        target = self._target(exercise, position)
        ceiling = (
            max(exercise.baseline_sets, math.floor(exercise.baseline_sets * self.policy.max_baseline_multiple)),
            max(exercise.baseline_reps, math.floor(exercise.baseline_reps * self.policy.max_baseline_multiple)),
        )
        current = (exercise.sets, exercise.reps)
        new = (
            max(current[0], min(target[0], ceiling[0])),
            max(current[1], min(target[1], ceiling[1])),
        )
        if new == current:
            return HOLD, current, f'All gates passed, already at target for {_describe(*position)}'
        return INCREASE, new, (
            f'All gates passed: {_describe(BlockType.parse(cycle.block_type), cycle.current_week, cycle.block_number)}'
            f' -> {_describe(*position)}'
        )

    def _decrease(self, exercise, cycle, metrics):
        position = previous_position(cycle)
        target = self._target(exercise, position)
        floor = (
            max(1, math.ceil(exercise.baseline_sets * self.policy.decrease_floor)),
            max(1, math.ceil(exercise.baseline_reps * self.policy.decrease_floor)),
        )
        current = (exercise.sets, exercise.reps)
        new = (
            min(current[0], max(target[0], floor[0])),
            min(current[1], max(target[1], floor[1])),
        )
        pain = _pain_summary(metrics)
        if new == current:
            return HOLD, current, f'High pain ({pain}), already at the lowest prescription'
        return DECREASE, new, f'Regressing to {_describe(*position)} due to high pain ({pain})'

    # ========== MANUAL OVERRIDE ==========

    def override_cycle(self, program_id, action, today: date = None) -> dict:
        """
        Clinician override of the week pointer.

        'advance' moves one week on (rolling the block over like a trigger),
        'regress' moves one week back within the current block and 'hold'
        keeps the week. When the position changes, auto-adjusting exercises
        take the new position's prescription. The trigger clock restarts in
        every case, so the next trigger only sees data logged after today.
        """
        if action not in OVERRIDE_ACTIONS:
            raise ValidationError('action must be advance, hold, or regress')
        today = today or date.today()

        with self.locks.for_program(program_id):
            program, cycle = self._load(program_id, lock_cycle=True)

            before = (BlockType.parse(cycle.block_type), cycle.current_week, cycle.block_number)
            previous_block_type = cycle.block_type

            try:
                if action == 'advance':
                    self._advance(program, cycle, today)
                else:
                    if action == 'regress' and cycle.current_week > 1:
                        block_type, week, block_number = previous_position(cycle)
                        cycle.current_week = week
                        cycle.intensity_multiplier = intensity_for(block_type, week, block_number, self.policy)
                    cycle.last_progressed_date = today

                after = (BlockType.parse(cycle.block_type), cycle.current_week, cycle.block_number)
                adjustments = []
                if after != before:
                    log_action = MANUAL_ADVANCE if action == 'advance' else MANUAL_REGRESS
                    reason = f'Clinician override ({action}): {_describe(*before)} -> {_describe(*after)}'
                    for exercise in program.exercises:
                        if not exercise.auto_adjust:
                            continue
                        adjustment = self._apply_position(program, cycle, exercise, after, log_action, reason, today)
                        if adjustment:
                            adjustments.append(adjustment)

                self.session.commit()

            except Exception:
                self.session.rollback()
                logger.exception(f'Cycle override ({action}) failed for program {program_id}, rolled back')
                raise

            logger.info(
                f'Program {program_id}: override {action}, {_describe(*before)} -> {_describe(*after)}, '
                f'{len(adjustments)} exercises changed'
            )

            return {
                'program_id': program.id,
                'action': action,
                'previous_week': before[1],
                'new_week': cycle.current_week,
                'previous_block_type': previous_block_type,
                'block_type': cycle.block_type,
                'block_number': cycle.block_number,
                'intensity_multiplier': cycle.intensity_multiplier,
                'adjustments': adjustments,
            }

    def _apply_position(self, program, cycle, exercise, position, action, reason, today):
        current = (exercise.sets, exercise.reps)
        new = self._target(exercise, position)
        if new == current:
            return None

        exercise.sets, exercise.reps = new
        exercise.last_adjusted_date = today
        self.session.add(ProgressionLogEntry(
            exercise_id=exercise.id,
            program_id=program.id,
            action=action,
            previous_sets=current[0],
            previous_reps=current[1],
            new_sets=new[0],
            new_reps=new[1],
            reason=reason,
            week_in_cycle=cycle.current_week,
            block_type=cycle.block_type,
        ))

        return {
            'exercise_id': exercise.id,
            'exercise_name': exercise.name,
            'action': action,
            'previous_sets': current[0],
            'previous_reps': current[1],
            'new_sets': new[0],
            'new_reps': new[1],
            'reason': reason,
        }

    # ========== WEIGHT ==========

    def adjust_weight_by_effort(self, program_id, today: date = None) -> dict:
        """
        Moves prescribed weights by the trailing week's average effort:
        easy sessions add weight, very hard ones take it off. Standard
        blocks of effort-tracking programs only.
        """
        today = today or date.today()

        with self.locks.for_program(program_id):
            program, cycle = self._load(program_id, lock_cycle=True)

            if cycle.block_type == BlockType.INTRODUCTORY.value:
                return {'program_id': program.id, 'adjustments': [],
                        'message': 'Weight adjustment skipped (introductory block)'}
            if not program.track_effort:
                return {'program_id': program.id, 'adjustments': [], 'message': 'Effort tracking not enabled'}

            window_start = max(
                today - timedelta(days=self.policy.metrics_window_days - 1), program.effective_start_date
            )

            try:
                adjustments = []
                for exercise in program.exercises:
                    if not exercise.auto_adjust or not exercise.weight or exercise.weight <= 0:
                        continue
                    adjustment = self._adjust_weight(program, cycle, exercise, window_start, today)
                    if adjustment:
                        adjustments.append(adjustment)
                self.session.commit()

            except Exception:
                self.session.rollback()
                logger.exception(f'Weight adjustment failed for program {program_id}, rolled back')
                raise

        logger.info(f'Program {program_id}: adjusted {len(adjustments)} exercise weights')
        return {
            'program_id': program.id,
            'adjustments': adjustments,
            'message': f'Adjusted {len(adjustments)} exercise weights based on effort',
        }

    def _adjust_weight(self, program, cycle, exercise, window_start, today):
        metrics = weekly_metrics(self.session, exercise, program.patient_id, window_start, today)
        if not metrics.effort_samples:
            return None

        previous = exercise.weight
        step = self.policy.weight_step
        if metrics.avg_effort <= self.policy.weight_easy_effort:
            action = WEIGHT_INCREASE
            new = _round_to(previous * (1 + step), self.policy.weight_rounding)
            reason = f'Effort too low ({metrics.avg_effort}/10), increasing weight {step:.0%}'
        elif metrics.avg_effort >= self.policy.weight_hard_effort:
            action = WEIGHT_DECREASE
            new = _round_to(previous * (1 - step), self.policy.weight_rounding)
            reason = f'Effort too high ({metrics.avg_effort}/10), decreasing weight {step:.0%}'
        else:
            return None

        if new == previous or new <= 0:
            return None

        exercise.weight = new
        self.session.add(ProgressionLogEntry(
            exercise_id=exercise.id,
            program_id=program.id,
            action=action,
            previous_sets=exercise.sets,
            previous_reps=exercise.reps,
            new_sets=exercise.sets,
            new_reps=exercise.reps,
            previous_weight=previous,
            new_weight=new,
            reason=reason,
            avg_effort=metrics.avg_effort,
            avg_pain=metrics.avg_exercise_pain if metrics.pain_samples else None,
            adherence=metrics.adherence,
            completion_rate=metrics.completion_rate,
            week_in_cycle=cycle.current_week,
            block_type=cycle.block_type,
        ))

        return {
            'exercise_id': exercise.id,
            'exercise_name': exercise.name,
            'action': action,
            'previous_weight': previous,
            'new_weight': new,
            'reason': reason,
        }
