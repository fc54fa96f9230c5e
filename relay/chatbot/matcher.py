from __future__ import annotations

import difflib
import re
import unicodedata
from typing import Protocol, Sequence

from relay.core.config import CHATBOT_FUZZY_THRESHOLD
from relay.models.chatbot import ChatbotOption
from relay.whatsapp.normalizer import InboundEvent


def normalize(text: str) -> str:
    text = (text or "").lower()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = re.sub(r"[-_]", " ", text)
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


class OptionMatcher(Protocol):
    def match(self, event: InboundEvent, options: Sequence[ChatbotOption]) -> ChatbotOption | None:
        ...


class ExactIdMatcher:
    """Respostas de botão/lista: o id selecionado deve bater com o option_id (ou o id da linha)."""

    def match(self, event: InboundEvent, options: Sequence[ChatbotOption]) -> ChatbotOption | None:
        selected = event.selection_id
        if not selected:
            return None
        for option in options:
            if selected == option.option_id or selected == option.id:
                return option
        return None


class TextMatcher:
    """Texto livre: option_id, número da opção, texto exato e por fim similaridade."""

    def __init__(self, *, threshold: float = CHATBOT_FUZZY_THRESHOLD, min_gap: float = 0.05) -> None:
        self.threshold = threshold
        self.min_gap = min_gap

    def match(self, event: InboundEvent, options: Sequence[ChatbotOption]) -> ChatbotOption | None:
        text = normalize(event.content)
        if not text or not options:
            return None

        for option in options:
            if text == normalize(option.option_id):
                return option

        if text.isdigit():
            index = int(text) - 1
            if 0 <= index < len(options):
                return options[index]

        for option in options:
            if text == normalize(option.texto):
                return option

        if text.isdigit():
            return None
        return self._fuzzy(text, options)

    def _fuzzy(self, text: str, options: Sequence[ChatbotOption]) -> ChatbotOption | None:
        scored = sorted(
            (
                (difflib.SequenceMatcher(None, text, normalize(option.texto)).ratio(), position, option)
                for position, option in enumerate(options)
            ),
            key=lambda item: (-item[0], item[1]),
        )
        best_score, _, best = scored[0]
        if best_score < self.threshold:
            return None
        if len(scored) > 1 and (best_score - scored[1][0]) < self.min_gap:
            return None
        return best


class ChainMatcher:
    def __init__(self, *matchers: OptionMatcher) -> None:
        self._matchers = matchers

    def match(self, event: InboundEvent, options: Sequence[ChatbotOption]) -> ChatbotOption | None:
        for matcher in self._matchers:
            option = matcher.match(event, options)
            if option is not None:
                return option
        return None


def default_matcher() -> OptionMatcher:
    return ChainMatcher(ExactIdMatcher(), TextMatcher())
