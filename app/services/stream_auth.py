import hashlib
import hmac

import jwt


class StreamCredentials:
    def __init__(self, api_key: str, api_secret: str):
        self.api_key = api_key
        self._secret = api_secret

    def verify_webhook(self, body: bytes, signature: str) -> bool:
        """Check the HMAC-SHA256 hex digest of the raw request body."""
        expected = hmac.new(self._secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip())

    def server_token(self) -> str:
        return jwt.encode({"server": True}, self._secret, algorithm="HS256")

    def user_token(self, user_id: str) -> str:
        return jwt.encode({"user_id": user_id}, self._secret, algorithm="HS256")

    def server_headers(self) -> dict[str, str]:
        return {
            "Authorization": self.server_token(),
            "stream-auth-type": "jwt",
            "Content-Type": "application/json",
        }
