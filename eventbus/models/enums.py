import enum


class EventStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class HandlerRunStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class BackoffStrategy(str, enum.Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum *values* (lowercase) rather than member names."""
    return [member.value for member in enum_cls]
