from __future__ import annotations


class DispatchBoardError(RuntimeError):
    pass


class AlreadyProcessingError(DispatchBoardError):
    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class ValidationError(DispatchBoardError, ValueError):
    pass


class DispatchLockedError(DispatchBoardError):
    def __init__(self, dispatch_id: str, status: str) -> None:
        super().__init__(f"This dispatch is {status} and cannot be deleted. Change status first.")
        self.dispatch_id = dispatch_id
        self.status = status


class NoSlotAvailableError(DispatchBoardError):
    def __init__(self, message: str) -> None:
        super().__init__(f"{message}. No available slot found.")
        self.collision_message = message
