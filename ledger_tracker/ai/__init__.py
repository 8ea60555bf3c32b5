import json
import logging
import os
import re
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Protocol

from huggingface_hub import InferenceClient

from ledger_tracker.core.errors import ValidationFailure
from ledger_tracker.core.models import EXPENSE, KINDS, Transaction, TransactionSuggestion
from ledger_tracker.core.validation import validate_transaction

logger = logging.getLogger(__name__)

_OLLAMA_URL = "http://localhost:11434/api/chat"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"
_JSON_BLOCK = re.compile(r"\{.*\}", re.S)


class LLMProvider(Protocol):
    """A minimal protocol all concrete providers must implement."""

    def generate(self, messages: List[dict]) -> str:  # noqa: D401 – keep simple signature
        """Return the model reply given a list-of-dicts chat history."""


@dataclass
class LLMClient:
    """Simple client that delegates chat requests to an LLM provider."""
    provider: LLMProvider | None = None

    def __post_init__(self) -> None:
        if self.provider is None:
            self.provider = get_provider_from_env()

    def chat(self, messages: List[dict]) -> str:
        return self.provider.generate(messages)


# -----------------------------------------------------------------------------
# Providers
# -----------------------------------------------------------------------------

@dataclass
class HuggingFaceProvider:
    model: str
    token: str | None = None

    def __post_init__(self) -> None:
        self._client = InferenceClient(api_key=self.token)

    def generate(self, messages: List[dict]) -> str:
        out = self._client.chat_completion(messages=messages, model=self.model)
        return out.choices[0].message.content.strip()


@dataclass
class OpenAIProvider:
    model: str
    api_key: str

    def generate(self, messages: List[dict]) -> str:
        payload = {"model": self.model, "messages": messages}
        data = json.dumps(payload).encode()
        req = urllib.request.Request(_OPENAI_URL, data=data, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("Authorization", f"Bearer {self.api_key}")
        with urllib.request.urlopen(req) as resp:
            resp_data = json.load(resp)
        return resp_data["choices"][0]["message"]["content"].strip()


@dataclass
class OllamaProvider:
    model: str
    url: str = _OLLAMA_URL

    def _post(self, payload: dict) -> dict:
        data = json.dumps(payload).encode()
        logger.debug("Ollama POST %s", self.url)
        req = urllib.request.Request(self.url, data=data, method="POST")
        req.add_header("Content-Type", "application/json")

        with urllib.request.urlopen(req) as resp:
            raw = resp.read().decode()
            logger.debug("Ollama reply %s", raw)
            return json.loads(raw)

    def generate(self, messages: List[dict]) -> str:
        resp_data = self._post({"model": self.model, "messages": messages, "stream": False})

        # /api/chat returns either {'message': str} or {'message': {'content': str}}
        msg = resp_data.get("message", "")
        if isinstance(msg, dict):
            msg = msg.get("content", "")
        if not isinstance(msg, str):
            raise RuntimeError(f"Unexpected Ollama response format: {resp_data}")
        return msg.strip()


def get_provider_from_env() -> LLMProvider:
    provider = os.environ.get("SMARTLEDGER_LLM_PROVIDER", "huggingface").lower()

    if provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY not set")
        model = os.environ.get("SMARTLEDGER_LLM_MODEL", "gpt-4o-mini")
        return OpenAIProvider(model=model, api_key=api_key)

    if provider == "ollama":
        model = os.environ.get("SMARTLEDGER_LLM_MODEL", "phi3:mini")
        url = os.environ.get("OLLAMA_URL", _OLLAMA_URL)
        return OllamaProvider(model=model, url=url)

    token = os.environ.get("HF_API_TOKEN")
    model = os.environ.get("SMARTLEDGER_LLM_MODEL", "Qwen/Qwen3-32B")
    return HuggingFaceProvider(model=model, token=token)


# -----------------------------------------------------------------------------
# Suggestion parsing
# -----------------------------------------------------------------------------

_PARSE_PROMPT = (
    "Extract a single personal finance transaction from the user's input. "
    "Reply with JSON only, using the keys title, amount, kind (income or expense), "
    "category and date (YYYY-MM-DD). Omit keys you cannot determine. "
    "Today is {today}."
)


def _float_or_none(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", ""))
    except ValueError:
        return None
    return number if number > 0 else None


def _date_or_none(value) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.strip()[:10]).date()
    except ValueError:
        return None


def _text_or_none(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def suggestion_from_payload(payload: dict) -> TransactionSuggestion:
    """Keep only well-formed fields from an untrusted parser payload."""
    kind = _text_or_none(payload.get("kind") or payload.get("type"))
    return TransactionSuggestion(
        title=_text_or_none(payload.get("title")),
        amount=_float_or_none(payload.get("amount")),
        kind=kind.lower() if kind and kind.lower() in KINDS else None,
        category=_text_or_none(payload.get("category")),
        date=_date_or_none(payload.get("date")),
    )


class BaseAIParser(ABC):
    """Composable layer for building prompts and parsing LLM responses."""

    @abstractmethod
    def build_messages(self, source: str) -> List[dict]:
        """Return chat messages describing the task."""

    def post_process(self, response: str) -> TransactionSuggestion | None:
        match = _JSON_BLOCK.search(response or "")
        if not match:
            logger.warning("LLM reply contained no JSON object")
            return None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning("LLM reply was not valid JSON")
            return None
        if not isinstance(payload, dict):
            return None
        return suggestion_from_payload(payload)

    def parse(self, source: str, client: LLMClient | None = None) -> TransactionSuggestion | None:
        """Return a suggestion, or ``None`` when the service fails."""
        if not source:
            return None
        client = client or LLMClient()
        try:
            out = client.chat(self.build_messages(source))
        except Exception:
            logger.exception("Error contacting LLM")
            return None
        return self.post_process(out)


class TextTransactionParser(BaseAIParser):
    """Parse a free-text note such as "lunch 45k yesterday"."""

    def build_messages(self, source: str) -> List[dict]:
        return [
            {"role": "system", "content": _PARSE_PROMPT.format(today=date.today().isoformat())},
            {"role": "user", "content": source},
        ]


class ReceiptParser(BaseAIParser):
    """Parse a base64 encoded receipt image. Receipts are always expenses."""

    def build_messages(self, source: str) -> List[dict]:
        image = source.split(",", 1)[1] if source.startswith("data:") else source
        return [
            {"role": "system", "content": _PARSE_PROMPT.format(today=date.today().isoformat())},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Read this receipt."},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image}"}},
                ],
            },
        ]

    def post_process(self, response: str) -> TransactionSuggestion | None:
        suggestion = super().post_process(response)
        if suggestion is not None:
            suggestion.kind = EXPENSE
            suggestion.category = suggestion.category or "Other"
            suggestion.date = suggestion.date or date.today()
        return suggestion


def suggestion_to_transaction(
    suggestion: TransactionSuggestion,
    title: str | None = None,
    amount: float | None = None,
    kind: str | None = None,
    category: str | None = None,
    on: date | None = None,
    notes: str | None = None,
) -> Transaction:
    """Build a validated transaction from a suggestion plus user overrides.

    Explicit arguments win over suggested values. Raises
    ``ValidationFailure`` when a required field is still missing.
    """
    tx = Transaction(
        title=title or suggestion.title,
        amount=amount if amount is not None else suggestion.amount,
        kind=kind or suggestion.kind or EXPENSE,
        category=category or suggestion.category or "Other",
        date=on or suggestion.date or date.today(),
        notes=notes,
    )
    if tx.amount is None:
        raise ValidationFailure("amount", "is required")
    return validate_transaction(tx)


def parse_text(text: str, provider: LLMProvider | None = None) -> TransactionSuggestion | None:
    """Convenience wrapper returning a suggestion for free text."""
    return TextTransactionParser().parse(text, LLMClient(provider))


def parse_receipt(image_base64: str, provider: LLMProvider | None = None) -> TransactionSuggestion | None:
    return ReceiptParser().parse(image_base64, LLMClient(provider))
