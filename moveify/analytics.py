"""
Adherence analytics for the patient dashboard.

Streaks, completion rates, trends, the activity grid, alerts, milestones
and wins, merged across a patient's active programs. The functions at the
top are pure; AdherenceAnalytics feeds them from the ledgers.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, NamedTuple, Optional

from moveify.checkins import summarize_check_ins
from moveify.errors import PatientNotFound
from moveify.ledger import CompletionLedger, CompletionQuery
from moveify.models import Program, User
from moveify.policy import DEFAULT_POLICY
from moveify.schedule import Weekday, date_range, is_scheduled_day

logger = logging.getLogger(__name__)

UP = 'up'
DOWN = 'down'
STABLE = 'stable'


def _mean(values):
    return round(sum(values) / len(values), 2) if values else 0.0


def _in_schedule(day, weekday_mask, program_start, program_end):
    if program_start is not None and day < program_start:
        return False
    if program_end is not None and day > program_end:
        return False
    return is_scheduled_day(day, weekday_mask)


def calculate_streak(completions_by_date: Dict[date, int], weekday_mask, program_start: Optional[date],
                     today: date, lookback_days: int = 365, program_end: Optional[date] = None) -> int:
    """
    Consecutive scheduled days with at least one completion, walking back
    from today. Today gets a grace period while it has nothing logged yet;
    unscheduled days are skipped; the walk ends at the program start.
    """
    day = today
    if _in_schedule(today, weekday_mask, program_start, program_end) and not completions_by_date.get(today):
        day = today - timedelta(days=1)

    earliest = today - timedelta(days=lookback_days)
    if program_start is not None and program_start > earliest:
        earliest = program_start

    streak = 0
    while day >= earliest:
        if _in_schedule(day, weekday_mask, program_start, program_end):
            if not completions_by_date.get(day):
                break
            streak += 1
        day -= timedelta(days=1)
    return streak


def aggregate_completion_rate(completed: int, prescribed: int) -> int:
    """Percentage of prescribed exercise-instances logged, capped at 100"""
    if prescribed > 0:
        return min(100, round(completed / prescribed * 100))
    return 100 if completed > 0 else 0


def detect_trend(series: List[float], epsilon: float) -> str:
    """Compares the mean of the second half of a series with the first"""
    if len(series) < 2:
        return STABLE
    middle = len(series) // 2
    delta = _mean(series[middle:]) - _mean(series[:middle])
    if delta > epsilon:
        return UP
    if delta < -epsilon:
        return DOWN
    return STABLE


def day_status(day: date, today: date, expected: int, completed: int) -> str:
    """
    future: after today; rest: nothing expected (unscheduled or outside the
    program); missed / partial / full by completions against expected.
    """
    if day > today:
        return 'future'
    if expected <= 0:
        return 'rest'
    if completed <= 0:
        return 'missed'
    if completed >= expected:
        return 'full'
    return 'partial'


def build_alerts(pain_samples, completion_rate: int, streak: int, has_history: bool,
                 critical_pain: int = 7, low_completion_rate: int = 50, prescribed: int = None) -> List[dict]:
    """
    pain_samples: (date, pain) pairs of the window. Emits at most one
    critical alert (citing the worst pain), warnings for low completion
    or a broken streak, and a success note when all is well. No completion
    warning when `prescribed` is 0: nothing was due in the window.
    """
    alerts = []

    severe = [(pain, day) for day, pain in pain_samples if pain is not None and pain >= critical_pain]
    if severe:
        pain, day = max(severe)
        alerts.append({
            'type': 'critical',
            'code': 'high_pain',
            'value': pain,
            'date': day.isoformat(),
            'message': f'Pain level {pain}/10 reported on {day.isoformat()}',
        })

    if completion_rate < low_completion_rate and prescribed != 0:
        alerts.append({
            'type': 'warning',
            'code': 'low_completion_rate',
            'value': completion_rate,
            'message': f'Completion rate is {completion_rate}%, below {low_completion_rate}%',
        })
    if streak == 0 and has_history:
        alerts.append({
            'type': 'warning',
            'code': 'streak_broken',
            'value': 0,
            'message': 'Streak broken: no exercises logged on the last scheduled day',
        })

    if not alerts and has_history:
        alerts.append({
            'type': 'success',
            'code': 'on_track',
            'message': 'On track: keep up the good work',
        })
    return alerts


def next_milestone(streak: int, milestones=(7, 14, 30)) -> dict:
    for target in sorted(milestones):
        if target > streak:
            return {
                'target': target,
                'current': streak,
                'remaining': target - streak,
                'message': f'{target - streak} more scheduled days to a {target}-day streak',
            }
    return {
        'target': None,
        'current': streak,
        'remaining': 0,
        'message': f'{streak}-day streak, keep going!',
    }


def weight_progression(weighted_records, exercise_names: Dict[int, str]) -> List[dict]:
    """
    weighted_records: (exercise_id, date, weight) in date order. First vs
    last logged weight per exercise; single data points are left out.
    """
    by_exercise = defaultdict(list)
    for exercise_id, day, weight in weighted_records:
        by_exercise[exercise_id].append((day, weight))

    progression = []
    for exercise_id, points in by_exercise.items():
        if len(points) < 2:
            continue
        (first_date, first), (last_date, last) = points[0], points[-1]
        change = round(last - first, 2)
        progression.append({
            'exercise_id': exercise_id,
            'exercise_name': exercise_names.get(exercise_id),
            'first_date': first_date.isoformat(),
            'last_date': last_date.isoformat(),
            'first_weight': first,
            'last_weight': last,
            'change': change,
            'change_percent': round(change / first * 100, 1) if first else None,
        })
    return progression


def recent_wins(activity: List[dict], progression: List[dict], streak: int, completed_today: bool,
                milestones=(7, 14, 30), max_weight_wins: int = 2) -> List[dict]:
    """
    activity: day entries (oldest first) with 'date' and 'status'.
    The streak win shows only on the day the threshold is reached.
    """
    wins = []

    full_days = [entry for entry in activity if entry['status'] == 'full']
    if full_days:
        latest = full_days[-1]
        wins.append({
            'type': 'full_day',
            'date': latest['date'],
            'message': f'Completed every exercise on {latest["date"]}',
        })

    gains = sorted((p for p in progression if p['change'] > 0),
                   key=lambda p: p['change_percent'] or 0, reverse=True)
    for gain in gains[:max_weight_wins]:
        wins.append({
            'type': 'weight_increase',
            'exercise_id': gain['exercise_id'],
            'exercise_name': gain['exercise_name'],
            'message': f'{gain["exercise_name"]}: {gain["first_weight"]} kg -> {gain["last_weight"]} kg',
        })

    if completed_today and streak in milestones:
        wins.append({
            'type': 'streak_milestone',
            'streak': streak,
            'message': f'{streak}-day streak reached!',
        })
    return wins


class _ProgramView(NamedTuple):
    program: Program
    exercise_ids: List[int]
    mask: frozenset
    start: date
    end: Optional[date]

    def expected_on(self, day: date) -> int:
        if _in_schedule(day, self.mask, self.start, self.end):
            return len(self.exercise_ids)
        return 0


class AdherenceAnalytics:

    def __init__(self, session, policy=None):
        self.session = session
        self.policy = policy or DEFAULT_POLICY

    def patient_analytics(self, patient_id, window_days: int = 30, today: date = None) -> dict:
        """Dashboard over the last `window_days` (clamped to 1..max_window_days) ending today"""
        today = today or date.today()
        window_days = min(max(window_days, 1), self.policy.max_window_days)
        if not self.session.get(User, patient_id):
            raise PatientNotFound()

        programs = self.session.query(Program).filter_by(patient_id=patient_id, is_active=True).order_by(
            Program.created_at, Program.id
        ).all()
        if not programs:
            return {'programs': [], 'overview': {}}

        views = [
            _ProgramView(p, [e.id for e in p.exercises], p.get_schedule(), p.effective_start_date, p.end_date)
            for p in programs
        ]
        window_start = today - timedelta(days=window_days - 1)
        lookback_start = today - timedelta(days=self.policy.streak_lookback_days)

        ledger = CompletionLedger(self.session)
        all_ids = [i for v in views for i in v.exercise_ids]
        history = ledger.counts_by_day(
            CompletionQuery().for_patient(patient_id).for_exercises(all_ids).between(lookback_start, today)
        )
        records = ledger.find(
            CompletionQuery().for_patient(patient_id).for_exercises(all_ids).between(window_start, today)
        )

        breakdown = [self._program_summary(v, ledger, patient_id, window_start, lookback_start, today)
                     for v in views]

        return {
            'programs': breakdown,
            'overview': self._overview(patient_id, views, history, records, window_start, window_days, today),
        }

    def _program_summary(self, view, ledger, patient_id, window_start, lookback_start, today):
        program = view.program
        summary = {
            'program_id': program.id,
            'program_name': program.name,
            'exercise_count': len(view.exercise_ids),
            'streak': 0,
            'completion_rate': 0,
            'completions': [],
        }
        if not view.exercise_ids:
            return summary

        by_day = ledger.counts_by_day(
            CompletionQuery().for_patient(patient_id).for_exercises(view.exercise_ids).between(lookback_start, today)
        )
        summary['streak'] = calculate_streak(
            by_day, view.mask, view.start, today, self.policy.streak_lookback_days, view.end
        )

        start = max(window_start, view.start)
        prescribed = sum(view.expected_on(day) for day in date_range(start, today))
        completed = sum(count for day, count in by_day.items() if start <= day <= today)
        summary['completion_rate'] = aggregate_completion_rate(completed, prescribed)
        summary['completions'] = [
            {'date': day.isoformat(), 'count': by_day[day]}
            for day in sorted(by_day) if window_start <= day <= today
        ]
        return summary

    def _overview(self, patient_id, views, history, records, window_start, window_days, today):
        policy = self.policy

        activity = []
        completed_total = 0
        prescribed_total = 0
        daily_ratios = []
        for day in date_range(window_start, today):
            expected = sum(v.expected_on(day) for v in views)
            completed = history.get(day, 0)
            completed_total += completed
            prescribed_total += expected
            if expected:
                daily_ratios.append(min(1.0, completed / expected))
            activity.append({
                'date': day.isoformat(),
                'weekday': Weekday.of(day).value,
                'status': day_status(day, today, expected, completed),
                'completed': completed,
                'expected': expected,
            })

        # One schedule covering every active program
        mask = frozenset().union(*(v.mask for v in views))
        start = min(v.start for v in views)
        end = None if any(v.end is None for v in views) else max(v.end for v in views)
        streak = calculate_streak(history, mask, start, today, policy.streak_lookback_days, end)

        completion_rate = aggregate_completion_rate(completed_total, prescribed_total)
        efforts = [r.effort_rating for r in records if r.effort_rating is not None]
        pains = [r.pain_level for r in records if r.pain_level is not None]

        names = {e.id: e.name for v in views for e in v.program.exercises}
        progression = weight_progression(
            [(r.exercise_id, r.completion_date, r.weight_performed)
             for r in records if r.weight_performed is not None and r.weight_performed > 0],
            names,
        )

        completed_today = bool(history.get(today)) and any(v.expected_on(today) for v in views)

        overview = {
            'period': {'start': window_start.isoformat(), 'end': today.isoformat(), 'days': window_days},
            'totals': {
                'completions': len(records),
                'active_days': len({r.completion_date for r in records}),
                'scheduled_days': sum(1 for entry in activity if entry['expected']),
                'prescribed': prescribed_total,
            },
            'completion_rate': completion_rate,
            'completion_trend': detect_trend(daily_ratios, policy.trend_epsilon['completion']),
            'streak': streak,
            'effort': {
                'average': _mean(efforts),
                'samples': len(efforts),
                'trend': detect_trend(efforts, policy.trend_epsilon['effort']),
            },
            'pain': {
                'average': _mean(pains),
                'samples': len(pains),
                'trend': detect_trend(pains, policy.trend_epsilon['pain']),
            },
            'alerts': build_alerts(
                [(r.completion_date, r.pain_level) for r in records],
                completion_rate,
                streak,
                has_history=bool(history),
                critical_pain=policy.critical_pain,
                low_completion_rate=policy.low_completion_rate,
                prescribed=prescribed_total,
            ),
            'weekly_activity': activity[-policy.activity_grid_days:],
            'weight_progression': progression,
            'next_milestone': next_milestone(streak, policy.streak_milestones),
            'recent_wins': recent_wins(
                activity, progression, streak, completed_today, policy.streak_milestones, policy.max_weight_wins
            ),
        }

        try:
            check_ins = summarize_check_ins(self.session, patient_id, window_start, today)
        except Exception:
            logger.exception(f'Check-in summary failed for patient {patient_id}, omitted')
        else:
            if check_ins:
                overview['check_ins'] = check_ins

        return overview
