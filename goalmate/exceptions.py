"""
Custom exceptions for the GoalMate application.
Provides specific exception types for better error handling and recovery.
"""


class GoalMateException(Exception):
    """Base exception for GoalMate application"""
    pass


class GoalNotFoundException(GoalMateException):
    """Raised when a goal is not found"""
    def __init__(self, goal_id: int):
        self.goal_id = goal_id
        super().__init__(f"Goal with ID {goal_id} not found")


class SubTaskNotFoundException(GoalMateException):
    """Raised when a sub-task does not belong to the goal"""
    def __init__(self, goal_id: int, sub_task_id: int):
        self.goal_id = goal_id
        self.sub_task_id = sub_task_id
        super().__init__(f"Sub-task with ID {sub_task_id} not found in goal {goal_id}")


class UserNotFoundException(GoalMateException):
    """Raised when a user is not found"""
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User with ID {user_id} not found")


class NotAuthorizedException(GoalMateException):
    """Raised when a user lacks permission for the requested mutation"""
    def __init__(self, user_id: int, action: str):
        self.user_id = user_id
        self.action = action
        super().__init__(f"User {user_id} is not authorized to {action}")


class GoalLimitReachedException(GoalMateException):
    """Raised when a non-premium user exceeds the goal creation limit"""
    def __init__(self, user_id: int, limit: int):
        self.user_id = user_id
        self.limit = limit
        super().__init__(
            f"Goal creation limit of {limit} reached. Upgrade to premium to create more goals."
        )


class ValidationException(GoalMateException):
    """Raised when data validation fails"""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for {field}: {message}")


class DatabaseException(GoalMateException):
    """Raised when database operations fail"""
    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database {operation} failed: {details}")


class ConcurrentUpdateException(DatabaseException):
    """Raised when a goal keeps changing underneath an update"""
    def __init__(self, goal_id: int, attempts: int):
        self.goal_id = goal_id
        self.attempts = attempts
        super().__init__(
            "update",
            f"goal {goal_id} was modified concurrently; gave up after {attempts} attempts"
        )
