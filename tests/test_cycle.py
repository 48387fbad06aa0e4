from datetime import date

import pytest

from moveify.cycle import (
    BlockType, advance_week, initialize_cycle, intensity_for, next_position, prescription_for_position,
    prescription_for_week, previous_position,
)
from moveify.errors import InvalidBlockType
from moveify.models import PeriodizationCycle, Program
from moveify.policy import Policy


def _cycle(block_type='introductory', week=1, total_weeks=4, block_number=1):
    return PeriodizationCycle(
        program_id=1,
        block_type=block_type,
        block_number=block_number,
        block_start_date=date(2025, 6, 2),
        current_week=week,
        total_weeks=total_weeks,
        intensity_multiplier=1.0,
    )


class TestPrescriptionForWeek:

    def test_introductory_week_one_eases_in(self):
        assert prescription_for_week('introductory', 1, 3, 10) == (2, 7)
        assert prescription_for_week('introductory', 2, 3, 10) == (3, 7)
        assert prescription_for_week('introductory', 3, 3, 10) == (3, 9)

    def test_introductory_rep_floor(self):
        assert prescription_for_week('introductory', 1, 3, 8) == (2, 6)

    def test_introductory_reaches_baseline_on_final_week(self):
        assert prescription_for_week(BlockType.INTRODUCTORY, 4, 4, 12) == (4, 12)

    @pytest.mark.parametrize('baseline', [(1, 1), (2, 4), (3, 5), (3, 10), (5, 15), (4, 30)])
    def test_introductory_never_exceeds_baseline(self, baseline):
        for week in range(1, 6):
            sets, reps = prescription_for_week('introductory', week, *baseline)
            assert sets <= baseline[0]
            assert reps <= baseline[1]

    def test_small_baseline_is_not_pushed_over_by_floor(self):
        assert prescription_for_week('introductory', 1, 2, 4) == (1, 4)

    def test_standard_weeks_are_non_decreasing_and_at_least_baseline(self):
        previous = (0, 0)
        for week in range(1, 7):
            sets, reps = prescription_for_week('standard', week, 3, 10)
            assert sets == 3
            assert reps >= 10
            assert reps >= previous[1]
            previous = (sets, reps)

    def test_standard_week_scaling(self):
        assert prescription_for_week('standard', 1, 3, 10) == (3, 10)
        assert prescription_for_week('standard', 3, 3, 10) == (3, 11)
        assert prescription_for_week('standard', 6, 3, 10) == (3, 12)

    def test_float_noise_does_not_round_up(self):
        assert prescription_for_week('standard', 2, 3, 20) == (3, 21)

    def test_missing_baseline_defaults(self):
        assert prescription_for_week('standard', 1, None, None) == (3, 10)

    def test_weeks_past_block_use_final_week(self):
        assert prescription_for_week('introductory', 9, 3, 10) == (3, 10)
        assert prescription_for_week('standard', 20, 3, 10) == prescription_for_week('standard', 6, 3, 10)

    def test_week_zero_rejected(self):
        with pytest.raises(ValueError):
            prescription_for_week('standard', 0, 3, 10)

    def test_unknown_block_type(self):
        with pytest.raises(InvalidBlockType) as exc:
            prescription_for_week('deload', 1, 3, 10)
        assert exc.value.value == 'deload'

    def test_policy_override(self):
        policy = Policy({'standard_rep_step': 0.1, 'standard_rep_cap': 1.3})
        assert prescription_for_week('standard', 4, 3, 10, policy) == (3, 13)


class TestPrescriptionForPosition:

    def test_later_blocks_scale_up(self):
        assert prescription_for_position('standard', 1, 1, 3, 10) == (3, 10)
        assert prescription_for_position('standard', 1, 2, 3, 10) == (3, 11)

    def test_capped_at_baseline_multiple(self):
        sets, reps = prescription_for_position('standard', 6, 10, 3, 10)
        assert sets == 3
        assert reps == 15

    def test_introductory_ignores_block_number(self):
        assert prescription_for_position('introductory', 1, 3, 3, 10) == (2, 7)


class TestCycleTransitions:

    def test_initialize_introductory(self):
        program = Program(name='Shoulder', patient_id=1, start_date=date(2025, 6, 2))
        cycle = initialize_cycle(program, 'introductory', today=date(2025, 6, 2))
        assert cycle.block_type == 'introductory'
        assert cycle.current_week == 1
        assert cycle.block_number == 1
        assert cycle.total_weeks == 4
        assert cycle.intensity_multiplier == 1.0
        assert cycle.block_start_date == date(2025, 6, 2)

    def test_initialize_standard(self):
        program = Program(name='Shoulder', patient_id=1)
        cycle = initialize_cycle(program, BlockType.STANDARD, today=date(2025, 6, 2))
        assert cycle.total_weeks == 6
        assert cycle.block_start_date == date(2025, 6, 2)

    def test_initialize_rejects_unknown_block(self):
        with pytest.raises(InvalidBlockType):
            initialize_cycle(Program(name='x', patient_id=1), 'maintenance')

    def test_advance_within_block(self):
        cycle = advance_week(_cycle(week=2), today=date(2025, 6, 16))
        assert cycle.current_week == 3
        assert cycle.block_type == 'introductory'
        assert cycle.last_progressed_date == date(2025, 6, 16)

    def test_introductory_rolls_into_standard(self):
        cycle = advance_week(_cycle(week=4), today=date(2025, 6, 30))
        assert cycle.block_type == 'standard'
        assert cycle.current_week == 1
        assert cycle.block_number == 1
        assert cycle.total_weeks == 6
        assert cycle.block_start_date == date(2025, 6, 30)
        assert cycle.intensity_multiplier == 1.0

    def test_standard_rolls_into_next_block(self):
        cycle = advance_week(_cycle('standard', week=6, total_weeks=6), today=date(2025, 8, 11))
        assert cycle.block_type == 'standard'
        assert cycle.block_number == 2
        assert cycle.current_week == 1
        assert cycle.intensity_multiplier == pytest.approx(1.1)

    def test_week_never_exceeds_total(self):
        cycle = _cycle()
        for _ in range(20):
            advance_week(cycle, today=date(2025, 6, 2))
            assert 1 <= cycle.current_week <= cycle.total_weeks

    def test_intensity_non_decreasing_within_block(self):
        values = [intensity_for('standard', week, 2) for week in range(1, 7)]
        assert values == sorted(values)
        assert intensity_for('introductory', 3) == 1.0

    def test_positions(self):
        assert next_position(_cycle(week=2)) == (BlockType.INTRODUCTORY, 3, 1)
        assert next_position(_cycle('standard', 6, 6, 2)) == (BlockType.STANDARD, 1, 3)
        assert previous_position(_cycle('standard', 3, 6, 2)) == (BlockType.STANDARD, 2, 2)
        assert previous_position(_cycle('standard', 1, 6, 2)) == (BlockType.INTRODUCTORY, 1, 1)
