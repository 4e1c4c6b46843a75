class StoreError(Exception):
    """Raised when the conversation store cannot complete a read or write."""
    def __init__(self, message, table=None):
        super().__init__(message)
        self.table = table


class DuplicateConversationError(StoreError):
    """Raised when a conversation for the same listing and participant pair already exists."""
    def __init__(self, pair_key):
        super().__init__(f"Conversation already exists for {pair_key}", table='conversations')
        self.pair_key = pair_key
