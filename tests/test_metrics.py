from datetime import date, timedelta

from moveify.cycle import advance_week
from moveify.ledger import CheckInLedger
from moveify.metrics import default_window, weekly_metrics

from tests.conftest import START, TODAY


def _squat(program):
    return program.exercises[0]


def test_empty_window_has_zero_samples(session, patient, make_program):
    program = make_program()
    metrics = weekly_metrics(session, _squat(program), patient.id, TODAY - timedelta(days=6), TODAY)

    assert metrics.completions == 0
    assert metrics.effort_samples == 0
    assert metrics.avg_effort == 0
    assert metrics.pain_samples == 0
    assert metrics.check_in_count == 0
    assert metrics.scheduled_days == 3
    assert metrics.adherence == 0
    assert metrics.completion_rate == 0


def test_inverted_window_is_empty(session, patient, make_program):
    program = make_program()
    metrics = weekly_metrics(session, _squat(program), patient.id, TODAY + timedelta(days=1), TODAY)
    assert metrics.completions == 0
    assert metrics.scheduled_days == 0


def test_averages_and_adherence(session, patient, make_program, log_completion):
    program = make_program()
    squat = _squat(program)
    # Fri 13 and Mon 16 done, Wed 18 missed
    log_completion(squat, date(2025, 6, 13), effort_rating=6, pain_level=2)
    log_completion(squat, date(2025, 6, 16), effort_rating=8)

    metrics = weekly_metrics(session, squat, patient.id, date(2025, 6, 12), TODAY)

    assert metrics.completions == 2
    assert metrics.avg_effort == 7.0
    assert metrics.effort_samples == 2
    assert metrics.avg_exercise_pain == 2.0
    assert metrics.pain_samples == 1
    assert metrics.scheduled_days == 3
    assert metrics.days_completed == 2
    assert metrics.adherence == round(2 / 3, 4)
    assert metrics.completion_rate == round(2 / 3, 4)


def test_completion_rate_is_capped(session, patient, make_program, log_completion):
    program = make_program()
    squat = _squat(program)
    # Sat and Sun are off-schedule extras
    for day in (date(2025, 6, 13), date(2025, 6, 14), date(2025, 6, 15), date(2025, 6, 16), date(2025, 6, 18)):
        log_completion(squat, day)

    metrics = weekly_metrics(session, squat, patient.id, date(2025, 6, 12), TODAY)
    assert metrics.completions == 5
    assert metrics.adherence == 1.0
    assert metrics.completion_rate == 1.0


def test_unscheduled_window_with_completion(session, patient, make_program, log_completion):
    program = make_program()
    squat = _squat(program)
    log_completion(squat, date(2025, 6, 14))

    metrics = weekly_metrics(session, squat, patient.id, date(2025, 6, 14), date(2025, 6, 15))
    assert metrics.scheduled_days == 0
    assert metrics.completion_rate == 1.0


def test_days_after_program_end_are_not_scheduled(session, patient, make_program):
    program = make_program(duration='2weeks')
    assert program.end_date == START + timedelta(days=13)

    metrics = weekly_metrics(session, _squat(program), patient.id, date(2025, 6, 12), TODAY)
    # Fri 13 and Mon 16 only; Wed 18 is past the end
    assert metrics.scheduled_days == 2


def test_check_in_averages(session, patient, make_program):
    program = make_program()
    ledger = CheckInLedger(session)
    ledger.submit(patient.id, date(2025, 6, 16), overall_feeling=4, general_pain=2, energy_level=3, sleep_quality=4)
    ledger.submit(patient.id, date(2025, 6, 17), overall_feeling=2, energy_level=5)
    session.commit()

    metrics = weekly_metrics(session, _squat(program), patient.id, date(2025, 6, 12), TODAY)
    assert metrics.check_in_count == 2
    assert metrics.avg_overall_feeling == 3.0
    assert metrics.feeling_samples == 2
    assert metrics.avg_general_pain == 2.0
    assert metrics.general_pain_samples == 1
    assert metrics.avg_energy == 4.0


def test_default_window_is_trailing_week(make_program):
    program = make_program()
    assert default_window(_squat(program), program.cycle, TODAY) == (date(2025, 6, 12), TODAY)


def test_default_window_includes_trigger_day(session, patient, make_program, log_completion):
    program = make_program()
    squat = _squat(program)
    log_completion(squat, date(2025, 6, 11), effort_rating=4)
    log_completion(squat, TODAY, effort_rating=6)

    start, end = default_window(squat, program.cycle, TODAY)
    metrics = weekly_metrics(session, squat, patient.id, start, end)

    assert end == TODAY
    assert metrics.completions == 1
    assert metrics.days_completed == 1
    assert metrics.avg_effort == 6.0


def test_default_window_never_precedes_program_start(make_program):
    program = make_program(start_date=date(2025, 6, 16), today=date(2025, 6, 16))
    assert default_window(_squat(program), program.cycle, TODAY) == (date(2025, 6, 16), TODAY)


def test_default_window_starts_after_last_adjustment(session, make_program):
    program = make_program()
    squat = _squat(program)
    squat.last_adjusted_date = date(2025, 6, 15)
    session.commit()

    assert default_window(squat, program.cycle, TODAY) == (date(2025, 6, 16), TODAY)


def test_default_window_starts_after_last_trigger(session, make_program):
    program = make_program()
    advance_week(program.cycle, today=TODAY)
    session.commit()

    start, end = default_window(_squat(program), program.cycle, TODAY)
    assert start > end


def test_to_dict_is_serializable(session, patient, make_program):
    program = make_program()
    data = weekly_metrics(session, _squat(program), patient.id, date(2025, 6, 12), TODAY).to_dict()
    assert data['window_start'] == '2025-06-12'
    assert data['window_end'] == '2025-06-18'
    assert data['effort_samples'] == 0
