"""Wellbeing check-ins: same-day warnings and the analytics summary"""

from datetime import date, timedelta

from moveify.ledger import CheckInLedger

WARNINGS = {
    'low_energy': (
        "You're reporting low energy today.",
        'Consider reducing your workout volume by 1 set or taking it easier today.',
    ),
    'high_pain': (
        "You're experiencing significant pain today.",
        'Consider resting today or consulting with your clinician before exercising.',
    ),
    'poor_recovery': (
        'Your recovery seems low (poor sleep + low energy).',
        'Be cautious today. Consider reducing volume or intensity.',
    ),
}


def _at_most(value, limit):
    return value is not None and value <= limit


def analyze_check_in(check_in) -> list:
    """Warnings raised by a single check-in"""
    found = []
    if _at_most(check_in.overall_feeling, 2) or _at_most(check_in.energy_level, 2):
        found.append('low_energy')
    if check_in.general_pain is not None and check_in.general_pain >= 7:
        found.append('high_pain')
    if _at_most(check_in.sleep_quality, 2) and _at_most(check_in.energy_level, 2):
        found.append('poor_recovery')

    return [
        {'type': kind, 'message': WARNINGS[kind][0], 'suggestion': WARNINGS[kind][1]}
        for kind in found
    ]


def summarize_check_ins(session, patient_id, window_start: date, today: date) -> dict:
    ledger = CheckInLedger(session)
    averages = ledger.averages(patient_id, window_start, today)
    if not averages['count']:
        return None

    latest = ledger.between(patient_id, window_start, today)[-1]
    return {
        'count': averages['count'],
        'avg_overall_feeling': averages['overall_feeling'][0],
        'avg_general_pain': averages['general_pain'][0],
        'avg_energy': averages['energy_level'][0],
        'avg_sleep': averages['sleep_quality'][0],
        'latest_date': latest.check_in_date.isoformat(),
        'checked_in_today': latest.check_in_date == today,
        'warnings': analyze_check_in(latest) if latest.check_in_date >= today - timedelta(days=1) else [],
    }
