from typing import Optional


class FormatError(Exception):
    """Raised when roster text does not match the Dagschema line grammar."""

    def __init__(self, message: str, line_number: Optional[int] = None, line: Optional[str] = None):
        self.message = message
        self.line_number = line_number
        self.line = line
        if line_number is not None:
            text = f"Line {line_number}: {message}"
            if line is not None:
                text = f"{text} ({line.strip()!r})"
        else:
            text = message
        super().__init__(text)


class ScheduleImportError(Exception):
    """Raised when a parsed roster cannot be committed; nothing was written."""

    pass


class AssignmentError(Exception):
    """Raised when a single worker-to-slot link cannot be committed."""

    def __init__(self, message: str, schedule_item_id: Optional[str] = None, user_id: Optional[str] = None):
        self.schedule_item_id = schedule_item_id
        self.user_id = user_id
        super().__init__(message)


# Mapping of custom exceptions to HTTP status codes
CUSTOM_ERRORS = {
    FormatError: 400,
    ScheduleImportError: 500,
    AssignmentError: 409,
}
