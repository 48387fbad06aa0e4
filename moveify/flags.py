"""
Clinician flags: events the progression engine raises for the prescribing
clinician (pain flares, performance holds, finished blocks).
"""

import logging
from datetime import date, datetime

from moveify.errors import FlagNotFound
from moveify.models import ClinicianFlag, Program

logger = logging.getLogger(__name__)

PAIN_FLARE = 'pain_flare'
PERFORMANCE_HOLD = 'performance_hold'
BLOCK_COMPLETE = 'block_complete'


class FlagBoard:
    """Raises, lists and resolves flags; raising never commits"""

    def __init__(self, session):
        self.session = session

    def raise_flag(self, program, flag_type, reason, day: date = None, resolved=False) -> ClinicianFlag:
        # Informational flags are stored already resolved
        flag = ClinicianFlag(
            program_id=program.id,
            patient_id=program.patient_id,
            flag_type=flag_type,
            reason=reason,
            flag_date=day or date.today(),
            resolved=resolved,
            resolved_at=datetime.utcnow() if resolved else None,
        )
        self.session.add(flag)
        logger.info(f'Program {program.id}: {flag_type} flag raised')
        return flag

    def for_clinician(self, clinician_id, patient_id=None, include_resolved=False):
        """Flags on the clinician's programs, most recent first"""
        query = self.session.query(ClinicianFlag).join(Program, ClinicianFlag.program_id == Program.id).filter(
            Program.clinician_id == clinician_id
        )
        if patient_id is not None:
            query = query.filter(ClinicianFlag.patient_id == patient_id)
        if not include_resolved:
            query = query.filter(ClinicianFlag.resolved.is_(False))
        return query.order_by(ClinicianFlag.created_at.desc(), ClinicianFlag.id.desc()).all()

    def for_program(self, program_id):
        return self.session.query(ClinicianFlag).filter_by(program_id=program_id).order_by(ClinicianFlag.id).all()

    def resolve(self, flag_id, resolved_by=None) -> ClinicianFlag:
        flag = self.session.get(ClinicianFlag, flag_id)
        if not flag:
            raise FlagNotFound()
        if not flag.resolved:
            flag.resolved = True
            flag.resolved_at = datetime.utcnow()
            flag.resolved_by = resolved_by
            self.session.commit()
        return flag
