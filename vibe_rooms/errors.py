# vibe_rooms/errors.py


class VibeRoomsError(Exception):
    pass


class InvalidInputError(VibeRoomsError):
    pass


class RoomNotFoundError(VibeRoomsError):
    pass


class OperationInProgressError(VibeRoomsError):
    pass


class FinishWorkflowError(VibeRoomsError):
    """
    Illegal finish-request transition (duplicate request, self-approval,
    nothing pending).
    """


class ReasoningServiceError(VibeRoomsError):
    pass


class MalformedResponseError(ReasoningServiceError):
    """
    The reasoning service answered, but the answer has no JSON or does not
    match the expected schema. Hard stage failure.
    """


class CodeGenPlatformError(VibeRoomsError):
    pass


class UnknownPatchOpError(VibeRoomsError):
    pass


class MaxRetryErrorsException(ReasoningServiceError):
    pass
