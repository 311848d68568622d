class SuggestionError(Exception):
    """Base class for every failure the suggestion pipeline surfaces to callers."""

    code = "SUGGESTION_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(SuggestionError):
    code = "INVALID_INPUT"
    status_code = 400


class EmbeddingFailure(SuggestionError):
    code = "EMBEDDING_FAILURE"
    status_code = 500


class DimensionMismatch(SuggestionError):
    code = "DIMENSION_MISMATCH"
    status_code = 500

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class IndexUnavailable(SuggestionError):
    code = "INDEX_UNAVAILABLE"
    status_code = 503


class OperationTimeout(SuggestionError):
    code = "TIMEOUT"
    status_code = 504


class MessageNotFound(SuggestionError):
    code = "MESSAGE_NOT_FOUND"
    status_code = 404

    def __init__(self, message_id: str, conversation_id: str):
        super().__init__(f"Message '{message_id}' not found in conversation '{conversation_id}'")
        self.message_id = message_id
        self.conversation_id = conversation_id


class RateLimited(SuggestionError):
    code = "RATE_LIMITED"
    status_code = 429
