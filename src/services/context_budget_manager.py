"""
ContextBudgetManager assembles the system prompt and the chat turns sent to
the model under a fixed token budget.

The usable budget is ``total_tokens - reserved_response_tokens``. The
retrieved context is charged first; when it alone is over budget, trailing
chunks are dropped at separator boundaries (the tenant reminder and any
aggregate answer are kept). Whatever remains is spent on chat history,
newest lines first. Older lines that do not fit are dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from src.providers.chat.base import ChatMessage, TurnRole
from src.providers.tokenizer_service import TokenizerService
from src.query.models import VectorMatch
from src.services.tenant_config import TenantConfig
from src.shared.config import BudgetConfig
from src.shared.errors import PromptTemplateMissingError
from src.shared.observability import get_logger
from src.shared.observability.metrics import context_tokens, history_lines_dropped_total

logger = get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
ADDITIONAL_INFO_HEADER = "\n\nInformação Adicional:\n"

NO_CONTEXT_NOTICE = (
    "Nenhum contexto específico de documentos foi encontrado para esta consulta. "
    "Não invente imóveis, preços, moradas ou características que não estejam "
    "nos documentos de {client_name}. Se não tiver a informação pedida, diga-o "
    "e ofereça-se para ajudar com outra questão sobre os imóveis de {client_name}."
)
TENANT_REMINDER = (
    "\n\nLembrete: é o assistente de {client_name}. Recomende apenas imóveis "
    "e empreendimentos de {client_name}."
)

NO_ONBOARDING_TEXT = "Não disponível"
NO_HISTORY_TEXT = "Nenhum histórico anterior disponível"

USER_LABELS = ("Utilizador:", "user:")
ASSISTANT_LABELS = ("Assistente:", "assistant:")
USER_PREFIX = "Utilizador: "
ASSISTANT_PREFIX = "Assistente: "

_PLACEHOLDER = re.compile(r"\{(onboardingAnswers|chatHistory|context|question)\}")

ChatHistory = Union[str, Sequence[Mapping[str, Any]], None]


class BudgetExceeded(RuntimeError):
    """Raised when a charge would take the remaining budget below zero."""

    def __init__(self, message: str, usage: Dict[str, int]):
        super().__init__(message)
        self.usage = usage


@dataclass
class AssembledPrompt:
    system_prompt: str
    turns: List[ChatMessage]
    context: str
    context_tokens: int
    history_tokens: int
    kept_history_lines: List[str] = field(default_factory=list)
    dropped_history_lines: int = 0

    @property
    def tokens_used(self) -> int:
        return self.context_tokens + self.history_tokens


@dataclass
class ContextBudgetManager:
    tokenizer: TokenizerService
    total_tokens: int = 4096
    reserved_response_tokens: int = 1000

    def __post_init__(self) -> None:
        if self.total_tokens <= 0:
            raise ValueError("Budgets must be positive integers")
        if not 0 <= self.reserved_response_tokens < self.total_tokens:
            raise ValueError("reserved_response_tokens must be in [0, total_tokens)")
        self._tokens_used = 0

    @classmethod
    def from_config(
        cls, tokenizer: TokenizerService, budget: BudgetConfig
    ) -> "ContextBudgetManager":
        return cls(
            tokenizer=tokenizer,
            total_tokens=budget.total_tokens,
            reserved_response_tokens=budget.reserved_response_tokens,
        )

    # ---- accounting ----

    @property
    def token_budget(self) -> int:
        return self.total_tokens - self.reserved_response_tokens

    @property
    def remaining(self) -> int:
        return self.token_budget - self._tokens_used

    @property
    def usage(self) -> Dict[str, int]:
        return {"tokens": self._tokens_used, "budget": self.token_budget}

    def can_consume(self, tokens: int) -> bool:
        return tokens <= self.remaining

    def consume(self, tokens: int) -> None:
        if not self.can_consume(tokens):
            raise BudgetExceeded(
                f"Budget exhausted (tokens={tokens}, remaining={self.remaining})",
                usage=self.usage,
            )
        self._tokens_used += tokens

    def reset(self) -> None:
        self._tokens_used = 0

    # ---- assembly ----

    def build_context(
        self,
        matches: Sequence[VectorMatch],
        tenant: TenantConfig,
        aggregate_answer: Optional[str] = None,
    ) -> str:
        body = CONTEXT_SEPARATOR.join(_context_texts(matches, tenant))
        return body + _context_tail(tenant, aggregate_answer)

    def fit_context(
        self,
        matches: Sequence[VectorMatch],
        tenant: TenantConfig,
        aggregate_answer: Optional[str] = None,
    ) -> str:
        """
        Context block cut down to the token budget.

        Whole chunks are kept in rank order while they fit next to the tenant
        reminder and aggregate answer. Only when not even the first chunk
        fits is that chunk truncated mid-text.
        """
        tail = _context_tail(tenant, aggregate_answer)
        body_budget = self.token_budget - self.tokenizer.count_tokens(tail)
        if body_budget <= 0:
            return self.tokenizer.truncate_to_token_limit(tail, self.token_budget)

        texts = _context_texts(matches, tenant)
        kept: List[str] = []
        for text in texts:
            candidate = CONTEXT_SEPARATOR.join(kept + [text])
            if self.tokenizer.count_tokens(candidate) > body_budget:
                break
            kept.append(text)

        if kept:
            body = CONTEXT_SEPARATOR.join(kept)
        else:
            body = self.tokenizer.truncate_to_token_limit(texts[0], body_budget)
        context = body + tail
        # BPE counts are not additive across the join
        if self.tokenizer.count_tokens(context) > self.token_budget:
            context = self.tokenizer.truncate_to_token_limit(context, self.token_budget)
        return context

    def fit_history(self, lines: Sequence[str]) -> List[str]:
        """
        Keep the newest lines that fit the remaining budget.

        Lines are charged newest first; the first line that would exhaust
        the budget stops the walk and it and every older line are dropped.
        Returns the kept lines in chronological order.
        """
        kept: List[str] = []
        for line in reversed(lines):
            cost = self.tokenizer.count_tokens(line)
            if cost >= self.remaining:
                break
            self.consume(cost)
            kept.append(line)
        kept.reverse()
        return kept

    def assemble(
        self,
        *,
        tenant: TenantConfig,
        question: str,
        matches: Sequence[VectorMatch],
        chat_history: ChatHistory = None,
        onboarding_answers: Union[Mapping[str, Any], str, None] = None,
        aggregate_answer: Optional[str] = None,
    ) -> AssembledPrompt:
        """
        Build the final system prompt and bounded chat turns for one request.

        Raises:
            PromptTemplateMissingError: tenant has no system prompt template
        """
        template = tenant.system_instruction
        if not template or not template.strip():
            raise PromptTemplateMissingError(tenant.client_id)

        self.reset()
        context = self.build_context(matches, tenant, aggregate_answer)
        context_cost = self.tokenizer.count_tokens(context)
        context_tokens.observe(context_cost)

        if context_cost > self.token_budget:
            context = self.fit_context(matches, tenant, aggregate_answer)
            logger.warning(
                "context_truncated",
                client_id=tenant.client_id,
                context_tokens=context_cost,
                token_budget=self.token_budget,
            )
            context_cost = self.tokenizer.count_tokens(context)
        self.consume(context_cost)

        history_lines = history_to_lines(chat_history)
        kept = self.fit_history(history_lines)

        dropped = len(history_lines) - len(kept)
        if dropped:
            history_lines_dropped_total.inc(dropped)
            logger.info(
                "history_truncated",
                client_id=tenant.client_id,
                kept=len(kept),
                dropped=dropped,
            )

        history_tokens = self.tokenizer.count_tokens_batch(kept)
        system_prompt = render_template(
            template,
            {
                "onboardingAnswers": format_onboarding(onboarding_answers),
                "chatHistory": "\n".join(kept) if kept else NO_HISTORY_TEXT,
                "context": context,
                "question": question,
            },
        )
        return AssembledPrompt(
            system_prompt=system_prompt,
            turns=parse_turns(kept),
            context=context,
            context_tokens=context_cost,
            history_tokens=history_tokens,
            kept_history_lines=kept,
            dropped_history_lines=dropped,
        )


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Single-pass placeholder substitution; substituted text is not re-scanned."""
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


def format_onboarding(answers: Union[Mapping[str, Any], str, None]) -> str:
    if not answers:
        return NO_ONBOARDING_TEXT
    if isinstance(answers, str):
        return answers
    return "\n".join(f"{key}: {_format_answer(value)}" for key, value in answers.items())


def _format_answer(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def history_to_lines(chat_history: ChatHistory) -> List[str]:
    """
    Normalize chat history to labelled lines.

    Raw text is split on newlines (blank lines dropped). Structured turns
    (``{"role"|"sender": ..., "content"|"text": ...}``) become
    ``Utilizador: ...`` / ``Assistente: ...`` lines.
    """
    if not chat_history:
        return []
    if isinstance(chat_history, str):
        if chat_history.strip() == NO_HISTORY_TEXT:
            return []
        return [line for line in chat_history.split("\n") if line.strip()]

    lines: List[str] = []
    for turn in chat_history:
        role = str(turn.get("role") or turn.get("sender") or "").lower()
        content = str(turn.get("content") or turn.get("text") or "").strip()
        if not content:
            continue
        if role in ("user", "visitor"):
            lines.append(USER_PREFIX + content)
        elif role in ("assistant", "bot"):
            lines.append(ASSISTANT_PREFIX + content)
        else:
            lines.append(content)
    return lines


def parse_turns(lines: Sequence[str]) -> List[ChatMessage]:
    """Labelled lines become turns; unlabelled lines are left out."""
    turns: List[ChatMessage] = []
    for line in lines:
        role, content = _split_label(line)
        if role is not None:
            turns.append(ChatMessage(role=role, content=content))
    return turns


def _split_label(line: str):
    stripped = line.strip()
    for labels, role in ((USER_LABELS, TurnRole.USER), (ASSISTANT_LABELS, TurnRole.ASSISTANT)):
        for label in labels:
            if stripped[: len(label)].lower() == label.lower():
                return role, stripped[len(label):].strip()
    return None, stripped


def _context_texts(matches: Sequence[VectorMatch], tenant: TenantConfig) -> List[str]:
    texts = [m.text for m in matches if m.text]
    return texts or [NO_CONTEXT_NOTICE.format(client_name=tenant.client_name)]


def _context_tail(tenant: TenantConfig, aggregate_answer: Optional[str]) -> str:
    tail = TENANT_REMINDER.format(client_name=tenant.client_name)
    if aggregate_answer:
        tail += ADDITIONAL_INFO_HEADER + aggregate_answer
    return tail
