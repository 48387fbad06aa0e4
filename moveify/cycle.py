"""
Periodization cycle: training blocks, week pointer and intensity.

A program runs one introductory block (easing in below baseline) followed
by standard blocks that repeat until the program ends. The cycle row is
mutated in place; history lives in the progression log.
"""

import math
from datetime import date
from enum import Enum

from moveify.errors import InvalidBlockType
from moveify.models import PeriodizationCycle
from moveify.policy import DEFAULT_POLICY

DEFAULT_BASELINE_SETS = 3
DEFAULT_BASELINE_REPS = 10


class BlockType(Enum):
    INTRODUCTORY = 'introductory'
    STANDARD = 'standard'

    @classmethod
    def parse(cls, value) -> 'BlockType':
        if isinstance(value, BlockType):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidBlockType(value)


def _ceil(value: float) -> int:
    # 20 * 1.05 is 21.000000000000004 in floating point
    return math.ceil(round(value, 6))


def _baseline(baseline_sets, baseline_reps):
    sets = baseline_sets if baseline_sets and baseline_sets > 0 else DEFAULT_BASELINE_SETS
    reps = baseline_reps if baseline_reps and baseline_reps > 0 else DEFAULT_BASELINE_REPS
    return sets, reps


def _ramp_step(policy, week):
    ramp = {int(k): v for k, v in policy.introductory_ramp.items()}
    if week in ramp:
        return ramp[week]
    earlier = [k for k in ramp if k <= week]
    return ramp[max(earlier)] if earlier else ramp[min(ramp)]


def week_intensity(week: int, policy=None) -> float:
    """Standard-block rep multiplier for a week (non-decreasing, capped)"""
    policy = policy or DEFAULT_POLICY
    week = min(max(week, 1), policy.standard_weeks)
    return min(policy.standard_rep_cap, 1 + policy.standard_rep_step * (week - 1))


def block_scale(block_number: int, policy=None) -> float:
    policy = policy or DEFAULT_POLICY
    return min(policy.block_intensity_cap, policy.block_intensity_growth ** (max(block_number, 1) - 1))


def intensity_for(block_type, week: int, block_number: int = 1, policy=None) -> float:
    """Intensity multiplier stored on the cycle row"""
    block_type = BlockType.parse(block_type)
    if block_type is BlockType.INTRODUCTORY:
        return 1.0
    return round(block_scale(block_number, policy) * week_intensity(week, policy), 4)


def prescription_for_week(block_type, week: int, baseline_sets=None, baseline_reps=None, policy=None):
    """
    Sets/reps prescribed at a block position. Pure.

    Introductory weeks ramp up from below baseline and reach it on the
    block's final week; standard weeks keep baseline sets and scale reps by
    the week intensity. Weeks past the end of the block use the final week.
    """
    policy = policy or DEFAULT_POLICY
    block_type = BlockType.parse(block_type)
    if week < 1:
        raise ValueError(f'week must be >= 1, got {week}')

    base_sets, base_reps = _baseline(baseline_sets, baseline_reps)

    if block_type is BlockType.INTRODUCTORY:
        week = min(week, policy.introductory_weeks)
        if week >= policy.introductory_weeks:
            return base_sets, base_reps
        sets_fraction, reps_fraction, min_sets, min_reps = _ramp_step(policy, week)
        sets = max(min_sets, _ceil(base_sets * sets_fraction))
        reps = max(min_reps, _ceil(base_reps * reps_fraction))
        # floors must not push a small baseline above itself
        return min(sets, base_sets), min(reps, base_reps)

    return base_sets, _ceil(base_reps * week_intensity(week, policy))


def prescription_for_position(block_type, week: int, block_number: int = 1,
                              baseline_sets=None, baseline_reps=None, policy=None):
    """Like prescription_for_week, with later standard blocks scaled up (capped)"""
    policy = policy or DEFAULT_POLICY
    block_type = BlockType.parse(block_type)
    sets, reps = prescription_for_week(block_type, week, baseline_sets, baseline_reps, policy)
    if block_type is BlockType.INTRODUCTORY or block_number <= 1:
        return sets, reps

    base_sets, base_reps = _baseline(baseline_sets, baseline_reps)
    reps = _ceil(base_reps * week_intensity(week, policy) * block_scale(block_number, policy))
    ceiling = max(base_reps, int(math.floor(round(base_reps * policy.max_baseline_multiple, 6))))
    return sets, min(reps, ceiling)


def initialize_cycle(program, block_type, today: date = None, policy=None) -> PeriodizationCycle:
    """Builds the week-1 cycle for a new program (caller adds it to the session)"""
    policy = policy or DEFAULT_POLICY
    block_type = BlockType.parse(block_type)
    today = today or date.today()

    return PeriodizationCycle(
        program=program,
        block_type=block_type.value,
        block_number=1,
        block_start_date=program.start_date or today,
        current_week=1,
        total_weeks=policy.weeks_for(block_type),
        intensity_multiplier=1.0,
    )


def next_position(cycle: PeriodizationCycle):
    """
    (block type, week, block number) one week after the cycle's position.

    Past the last week an introductory block becomes standard week 1 (same
    block number); a standard block rolls into the next block.
    """
    block_type = BlockType.parse(cycle.block_type)
    if cycle.current_week < cycle.total_weeks:
        return block_type, cycle.current_week + 1, cycle.block_number
    if block_type is BlockType.INTRODUCTORY:
        return BlockType.STANDARD, 1, cycle.block_number
    return BlockType.STANDARD, 1, cycle.block_number + 1


def previous_position(cycle: PeriodizationCycle):
    """Position one week back; the first week of a block falls back to introductory week 1"""
    block_type = BlockType.parse(cycle.block_type)
    if cycle.current_week > 1:
        return block_type, cycle.current_week - 1, cycle.block_number
    return BlockType.INTRODUCTORY, 1, 1


def advance_week(cycle: PeriodizationCycle, today: date = None, policy=None) -> PeriodizationCycle:
    """Moves the cycle one week forward, rolling blocks over as needed"""
    policy = policy or DEFAULT_POLICY
    today = today or date.today()

    block_type, week, block_number = next_position(cycle)
    if week == 1:
        cycle.block_type = block_type.value
        cycle.block_number = block_number
        cycle.total_weeks = policy.weeks_for(block_type)
        cycle.block_start_date = today

    cycle.current_week = week
    cycle.intensity_multiplier = intensity_for(block_type, week, block_number, policy)
    cycle.last_progressed_date = today
    return cycle


def cycle_to_dict(cycle: PeriodizationCycle) -> dict:
    return {
        'program_id': cycle.program_id,
        'block_type': cycle.block_type,
        'block_number': cycle.block_number,
        'block_start_date': cycle.block_start_date.isoformat() if cycle.block_start_date else None,
        'current_week': cycle.current_week,
        'total_weeks': cycle.total_weeks,
        'intensity_multiplier': cycle.intensity_multiplier,
        'last_progressed_date': cycle.last_progressed_date.isoformat() if cycle.last_progressed_date else None,
    }
