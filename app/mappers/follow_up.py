from urllib.parse import quote

from app.schemas.stream import ChatMessage

AVATAR_URL = "https://api.dicebear.com/9.x/bottts-neutral/svg"

_FALLBACK_PROMPT = "Follow your standard coaching guidelines."


def build_follow_up_instructions(summary: str | None, prompt: str | None) -> str:
    return "\n".join([
        "You are an AI assistant helping the user revisit a recently completed meeting.",
        "Below is a summary of the meeting, generated from the transcript:",
        "",
        summary or "No summary is available.",
        "",
        "The following are your original instructions from the live meeting assistant. "
        "Please continue to follow these behavioral guidelines as you assist the user:",
        "",
        prompt or _FALLBACK_PROMPT,
        "",
        "The user may ask questions about the meeting, request clarifications, or ask for "
        "follow-up actions. Always base your responses on the meeting summary above.",
        "Use the recent conversation history to keep continuity with earlier messages.",
        "If the summary does not contain enough information to answer a question, politely "
        "let the user know.",
        "Be concise, helpful, and accurate.",
    ])


def build_chat_history(
    history: list[ChatMessage], agent_id: str, text: str
) -> list[dict]:
    """Chat turns for the model, ending with the new user message.

    Consecutive turns from the same side are merged and leading assistant
    turns dropped, since the model requires alternating roles starting with
    the user.
    """
    turns: list[dict] = []
    for message in history:
        if not message.text or not message.text.strip():
            continue
        role = "assistant" if message.user and message.user.id == agent_id else "user"
        turns.append({"role": role, "content": message.text.strip()})

    # The webhook's message may already be in the fetched history.
    if turns and turns[-1] == {"role": "user", "content": text.strip()}:
        turns.pop()
    turns.append({"role": "user", "content": text.strip()})

    merged: list[dict] = []
    for turn in turns:
        if merged and merged[-1]["role"] == turn["role"]:
            merged[-1]["content"] += "\n" + turn["content"]
        else:
            merged.append(dict(turn))
    while merged and merged[0]["role"] == "assistant":
        merged.pop(0)
    return merged


def avatar_url(seed: str) -> str:
    return f"{AVATAR_URL}?seed={quote(seed)}"
