class GastoCategorizerError(Exception):
    """Base class for errors raised by the categorizer."""


class PendingConfirmationExistsError(GastoCategorizerError):
    def __init__(self, conversation_id: str, confirmation_id: str) -> None:
        super().__init__(
            f"Conversation {conversation_id} already has pending confirmation {confirmation_id}"
        )
        self.conversation_id = conversation_id
        self.confirmation_id = confirmation_id


class ConfirmationNotFoundError(GastoCategorizerError):
    def __init__(self, confirmation_id: str) -> None:
        super().__init__(f"Confirmation {confirmation_id} not found")
        self.confirmation_id = confirmation_id


class InvalidTransitionError(GastoCategorizerError):
    def __init__(self, confirmation_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Confirmation {confirmation_id} cannot move from {current} to {target}"
        )
        self.confirmation_id = confirmation_id
        self.current = current
        self.target = target


class ConcurrentUpdateError(GastoCategorizerError):
    def __init__(self, confirmation_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Confirmation {confirmation_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.confirmation_id = confirmation_id
        self.expected = expected
        self.actual = actual


class AIProviderError(GastoCategorizerError):
    """The AI extraction provider failed or returned an unusable answer."""


class EmbeddingError(GastoCategorizerError):
    """The embedding provider failed or returned an unusable vector."""
