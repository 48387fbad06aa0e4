import pytest

from moveify.errors import FlagNotFound
from moveify.flags import BLOCK_COMPLETE, PAIN_FLARE, PERFORMANCE_HOLD, FlagBoard

from tests.conftest import TODAY


@pytest.fixture
def board(session):
    return FlagBoard(session)


def test_only_the_prescribing_clinicians_flags(session, board, clinician, make_program):
    mine = make_program(clinician_id=clinician.id)
    unowned = make_program(name='Shoulder rehab')
    board.raise_flag(mine, PAIN_FLARE, 'Pain flare detected: Squat', TODAY)
    board.raise_flag(unowned, BLOCK_COMPLETE, 'Block complete', TODAY)
    session.commit()

    flags = board.for_clinician(clinician.id)
    assert [(f.program_id, f.flag_type) for f in flags] == [(mine.id, PAIN_FLARE)]


def test_informational_flags_are_stored_resolved(session, board, clinician, make_program):
    program = make_program(clinician_id=clinician.id)
    hold = board.raise_flag(program, PERFORMANCE_HOLD, 'Performance hold', TODAY, resolved=True)
    session.commit()

    assert hold.resolved_at is not None
    assert board.for_clinician(clinician.id) == []
    assert board.for_clinician(clinician.id, include_resolved=True) == [hold]


def test_resolve_is_idempotent(session, board, clinician, make_program):
    program = make_program(clinician_id=clinician.id)
    flag = board.raise_flag(program, PAIN_FLARE, 'Pain flare detected: Squat', TODAY)
    session.commit()

    resolved = board.resolve(flag.id, resolved_by=clinician.id)
    first_resolved_at = resolved.resolved_at
    board.resolve(flag.id)

    assert resolved.resolved is True
    assert resolved.resolved_by == clinician.id
    assert resolved.resolved_at == first_resolved_at
    assert board.for_program(program.id) == [flag]

    with pytest.raises(FlagNotFound):
        board.resolve(9999)
