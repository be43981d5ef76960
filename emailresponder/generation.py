import logging
import re
from typing import Literal
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

Language = Literal["en", "es", "de", "fr", "zh", "zh-Hant", "ja", "ko", "it", "pt-BR", "ru", "hi", "hy"]
Tone = Literal["concise", "friendly", "formal", "professional", "casual"]
Stance = Literal["positive", "neutral", "negative"]
Length = Literal["short", "medium", "long"]

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "de": "German",
    "fr": "French",
    "zh": "Chinese (Simplified)",
    "zh-Hant": "Chinese (Traditional)",
    "ja": "Japanese",
    "ko": "Korean",
    "it": "Italian",
    "pt-BR": "Portuguese (Brazil)",
    "ru": "Russian",
    "hi": "Hindi",
    "hy": "Armenian",
}

LENGTH_RULES = {
    "short": "Aim for 2-3 short sentences.",
    "medium": "Aim for 3-5 sentences, balanced detail.",
    "long": "Aim for 5-7 sentences with more elaboration.",
}

STANCE_RULES = {
    "positive": "Keep a positive, friendly attitude.",
    "neutral": "Keep a neutral tone without bias.",
    "negative": "Politely decline or push back if necessary.",
}

MAX_TOKENS = {"short": 220, "medium": 320, "long": 450}

FALLBACK_REPLIES = {
    "positive": "Thanks for the note, happy to connect! Tomorrow at 10 AM or 2 PM works; share a time if that doesn't fit.",
    "neutral": "Thanks for your message. Tomorrow at 10 AM or 2 PM works for me. Let me know what you prefer.",
    "negative": "Thanks for reaching out. Unfortunately I'm not available at that time, but I'd be happy to meet next week.",
}

MAX_BODY_CHARS = 10000


class ReplyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subject: str = Field(default="", max_length=300)
    body: str = Field(default="", max_length=20000)
    language: Language = "en"
    tone: Tone = "concise"
    stance: Stance = "positive"
    length: Length = "short"
    thread_message_id: str | None = Field(default=None, alias="threadMessageId")


def sanitize_email_body(text: str) -> str:
    """Strip quoted lines, reply headers and signatures from a pasted email."""
    text = (text or "").replace("\r\n", "\n")
    text = re.sub(r"^>.*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"On .*wrote:[\s\S]*$", "", text, flags=re.IGNORECASE)
    text = re.sub(r"From:.*\nSent:.*\nTo:.*\nSubject:.*\n", "", text, flags=re.IGNORECASE)
    text = re.sub(r"--\s*\n[\s\S]*$", "", text)
    return text.strip()[:MAX_BODY_CHARS]


def hard_trim(text: str) -> str:
    return re.sub(r"^[\"'`]+|[\"'`]+$", "", text or "").strip()


def build_messages(request: ReplyRequest, cleaned_body: str) -> list:
    tone_rule = "Keep it brief and direct." if request.tone == "concise" else f"Apply a {request.tone} tone."
    system = "\n".join([
        "You are EmailResponder, an assistant that drafts professional Gmail replies.",
        f"Write strictly in {LANGUAGE_NAMES[request.language]}.",
        tone_rule,
        STANCE_RULES[request.stance],
        LENGTH_RULES[request.length],
        "Do not quote the original message.",
        "End with a brief sign-off like 'Best,'.",
    ])
    user = "\n".join([
        f"SUBJECT: {request.subject or '(no subject)'}",
        "ORIGINAL EMAIL:",
        cleaned_body,
        "",
        "Generate the reply body only (no subject line).",
    ])
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def completion_params(request: ReplyRequest) -> dict:
    return {
        "temperature": 0.3 if request.tone == "concise" else 0.6,
        "max_tokens": MAX_TOKENS[request.length],
    }


def fallback_reply(stance: str) -> str:
    return hard_trim("\n".join([FALLBACK_REPLIES.get(stance, FALLBACK_REPLIES["positive"]), "", "Best,"]))


class ReplyGenerator:
    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 20.0, client=None):
        self.model = model
        self.client = client
        if self.client is None and api_key:
            self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def generate(self, request: ReplyRequest) -> str:
        cleaned = sanitize_email_body(request.body)
        if self.client is None:
            logger.warning("OPENAI_API_KEY not set, using fallback reply")
            return fallback_reply(request.stance)
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=build_messages(request, cleaned),
                **completion_params(request),
            )
            text = (completion.choices[0].message.content or "").strip() if completion.choices else ""
        except OpenAIError:
            logger.exception("OpenAI generation failed")
            text = ""
        if not text:
            return fallback_reply(request.stance)
        return hard_trim(text)
