"""
Error taxonomy shared by the core modules and the blueprints.

Core functions raise these; routes translate them into
``{'error': message}`` responses using ``status_code``.
"""


class FoodRescueError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class Unauthorized(FoodRescueError):
    """Caller role or ownership does not match the operation."""
    status_code = 403


class NotFound(FoodRescueError):
    status_code = 404


class InvalidState(FoodRescueError):
    """The requested transition's precondition on the current status is not met."""
    status_code = 400


class CapacityError(FoodRescueError):
    """Requested claim quantity exceeds the AVAILABLE items of a listing."""
    status_code = 400

    def __init__(self, message, available=0):
        super().__init__(message)
        self.available = available

    def to_dict(self):
        return {'error': self.message, 'available': self.available}


class ValidationError(FoodRescueError):
    status_code = 400
