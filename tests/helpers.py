import hashlib
import hmac
import json

from app.schemas.curriculum import Blueprint, Session

STREAM_API_KEY = "test-stream-key"
STREAM_API_SECRET = "test-stream-secret"

VALID_PROMPT = (
    "PERSONALITY AND TONE\nWarm.\n\n"
    "SESSION GUIDELINES\nStay on topic.\n\n"
    "CONVERSATION STATES\n1. Greeting\n2. Practice\n3. Wrap-up"
)


def sign(body: bytes, secret: str = STREAM_API_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def webhook_headers(body: bytes) -> dict[str, str]:
    return {
        "x-signature": sign(body),
        "x-api-key": STREAM_API_KEY,
        "content-type": "application/json",
    }


def make_blueprint(count: int = 2) -> Blueprint:
    return Blueprint(
        id="bp-1",
        name="Public speaking",
        sessions=[
            Session(
                session_id=f"S{i}",
                session_name=f"Session {i}",
                completion_criteria=[f"S{i}-a", f"S{i}-b"],
                prompt=VALID_PROMPT,
            )
            for i in range(1, count + 1)
        ],
    )
