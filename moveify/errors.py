"""
Domain errors. Each carries the HTTP status the API answers with.
"""


class MoveifyError(Exception):
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class ValidationError(MoveifyError):
    """Invalid input"""


class InvalidBlockType(MoveifyError):
    """Block type must be 'introductory' or 'standard'"""

    def __init__(self, value=None):
        super().__init__(f"Invalid block type {value!r}: expected 'introductory' or 'standard'")
        self.value = value


class InvalidCompletionDate(MoveifyError):
    """Completion date precedes the program start date"""


class Forbidden(MoveifyError):
    """Not allowed"""
    status_code = 403


class NotFound(MoveifyError):
    """Not found"""
    status_code = 404


class ProgramNotFound(NotFound):
    """Program not found"""


class CycleNotFound(NotFound):
    """No active cycle found for program"""


class ExerciseNotFound(NotFound):
    """Exercise not found"""


class PatientNotFound(NotFound):
    """Patient not found"""


class FlagNotFound(NotFound):
    """Flag not found"""
