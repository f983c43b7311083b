"""Security checks applied to decoded URLs."""

from newsunfurl.security.url_validator import (
    DestinationRejected,
    DestinationValidator,
    RejectionReason,
)

__all__ = ["DestinationRejected", "DestinationValidator", "RejectionReason"]
