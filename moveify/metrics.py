"""
Per-exercise signal over a date window: effort, pain, adherence,
completion rate and the patient's wellbeing check-ins.

Every average comes with its sample count. A zero average with zero
samples means "no data", not "no pain".
"""

from datetime import date, timedelta
from typing import NamedTuple

from moveify.ledger import CheckInLedger, CompletionLedger, CompletionQuery
from moveify.policy import DEFAULT_POLICY
from moveify.schedule import date_range, is_scheduled_day


class WeeklyMetrics(NamedTuple):
    exercise_id: int
    window_start: date
    window_end: date
    avg_effort: float = 0.0
    effort_samples: int = 0
    avg_exercise_pain: float = 0.0
    pain_samples: int = 0
    adherence: float = 0.0
    completion_rate: float = 0.0
    completions: int = 0
    scheduled_days: int = 0
    days_completed: int = 0
    avg_overall_feeling: float = 0.0
    feeling_samples: int = 0
    avg_general_pain: float = 0.0
    general_pain_samples: int = 0
    avg_energy: float = 0.0
    avg_sleep: float = 0.0
    check_in_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.completions == 0

    def to_dict(self):
        data = self._asdict()
        data['window_start'] = self.window_start.isoformat()
        data['window_end'] = self.window_end.isoformat()
        return data


def _mean(values):
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def scheduled_days_in(program, start: date, end: date):
    """Days of the window the program schedules (mask and program date range)"""
    mask = program.get_schedule()
    return [d for d in date_range(start, end) if is_scheduled_day(d, mask) and program.is_running_on(d)]


def default_window(exercise, cycle=None, today: date = None, policy=None):
    """
    The trailing `metrics_window_days` days ending on and including `today`
    (the trigger day's own sessions count), tightened so it never reaches
    back past the last adjustment of the exercise, the last progression
    trigger of the cycle or the program start.
    """
    policy = policy or DEFAULT_POLICY
    today = today or date.today()

    candidates = [today - timedelta(days=policy.metrics_window_days - 1), exercise.program.effective_start_date]
    if exercise.last_adjusted_date:
        candidates.append(exercise.last_adjusted_date + timedelta(days=1))
    if cycle is not None and cycle.last_progressed_date:
        candidates.append(cycle.last_progressed_date + timedelta(days=1))
    return max(candidates), today


def weekly_metrics(session, exercise, patient_id: int, window_start: date, window_end: date) -> WeeklyMetrics:
    if window_start > window_end:
        return WeeklyMetrics(exercise.id, window_start, window_end)

    program = exercise.program
    completions = CompletionLedger(session).find(
        CompletionQuery().for_patient(patient_id).for_exercises([exercise.id]).between(window_start, window_end)
    )
    efforts = [c.effort_rating for c in completions if c.effort_rating is not None]
    pains = [c.pain_level for c in completions if c.pain_level is not None]

    scheduled = scheduled_days_in(program, window_start, window_end)
    done_days = {c.completion_date for c in completions}
    days_completed = len(done_days.intersection(scheduled))

    if scheduled:
        adherence = round(days_completed / len(scheduled), 4)
        completion_rate = round(min(1.0, len(completions) / len(scheduled)), 4)
    else:
        # Nothing was due: logging anything counts as fully done
        adherence = completion_rate = 1.0 if completions else 0.0

    check_ins = CheckInLedger(session).averages(patient_id, window_start, window_end)
    feeling, feeling_samples = check_ins['overall_feeling']
    general_pain, general_pain_samples = check_ins['general_pain']

    return WeeklyMetrics(
        exercise_id=exercise.id,
        window_start=window_start,
        window_end=window_end,
        avg_effort=_mean(efforts),
        effort_samples=len(efforts),
        avg_exercise_pain=_mean(pains),
        pain_samples=len(pains),
        adherence=adherence,
        completion_rate=completion_rate,
        completions=len(completions),
        scheduled_days=len(scheduled),
        days_completed=days_completed,
        avg_overall_feeling=feeling or 0.0,
        feeling_samples=feeling_samples,
        avg_general_pain=general_pain or 0.0,
        general_pain_samples=general_pain_samples,
        avg_energy=check_ins['energy_level'][0] or 0.0,
        avg_sleep=check_ins['sleep_quality'][0] or 0.0,
        check_in_count=check_ins['count'],
    )
