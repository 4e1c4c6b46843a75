from jose import jwt, JWTError
from datetime import timedelta

from config import config
from lf_server.exception.UnauthorizedError import UnauthorizedError
from lf_server.utils.time_utils import now_utc


class AuthSecurity:
    secret_key = None
    algorithm = 'HS256'
    access_token_expire_minutes = 7 * 24 * 60

    @classmethod
    def configure(cls, secret_key, algorithm='HS256', access_token_expire_minutes=7*24*60):
        cls.secret_key = secret_key
        cls.algorithm = algorithm
        cls.access_token_expire_minutes = access_token_expire_minutes

    @classmethod
    def configure_from_config(cls):
        """Configure from config/settings (JWT_SECRET, JWT_ALGORITHM, ACCESS_TOKEN_MINUTES)."""
        secret = config.JWT_SECRET
        if not secret:
            # Fail fast in production; dev and testing fall back to a fixed value.
            raise RuntimeError('JWT_SECRET is required')
        cls.configure(
            secret_key=secret,
            algorithm=config.JWT_ALGORITHM,
            access_token_expire_minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES,
        )

    @classmethod
    def encode_token(cls, data: dict, expires_delta: timedelta = None) -> str:
        to_encode = data.copy()
        expire = now_utc() + (expires_delta or timedelta(minutes=cls.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, cls.secret_key, algorithm=cls.algorithm)

    @classmethod
    def decode_token(cls, token: str) -> dict:
        # Check for well-formed JWT (should have 2 dots)
        if not token or token.count('.') != 2:
            raise UnauthorizedError("Malformed or missing token. Please provide a valid JWT token in the Authorization header.")
        try:
            payload = jwt.decode(token, cls.secret_key, algorithms=[cls.algorithm])
        except JWTError as e:
            msg = str(e)
            if 'expired' in msg.lower():
                raise UnauthorizedError("Token expired. Please login again or refresh your session.")
            elif 'Signature verification failed' in msg:
                raise UnauthorizedError("Invalid token signature. Please login again.")
            raise UnauthorizedError(f"Invalid token: {msg}.")
        if not payload.get('user_key'):
            raise UnauthorizedError("Token has no user_key claim.")
        return payload


def get_auth_payload(request):
    """
    Extracts and decodes the Bearer token from the Authorization header in the request.
    Raises UnauthorizedError if missing or invalid.
    Returns the decoded payload.
    """
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        raise UnauthorizedError('Missing or invalid token')
    token = auth_header.split(' ', 1)[1]
    return AuthSecurity.decode_token(token)
