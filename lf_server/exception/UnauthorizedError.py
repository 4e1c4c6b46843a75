class UnauthorizedError(Exception):
    """Raised when the caller's identity is missing or its bearer token is invalid, expired, or malformed."""
    def __init__(self, message='Identity not available'):
        super().__init__(message)
