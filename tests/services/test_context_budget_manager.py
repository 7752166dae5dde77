import pytest

from conftest import make_match
from src.providers.chat.base import TurnRole
from src.services.context_budget_manager import (
    ADDITIONAL_INFO_HEADER,
    TENANT_REMINDER,
    BudgetExceeded,
    ContextBudgetManager,
    history_to_lines,
    parse_turns,
    render_template,
)
from src.services.tenant_config import TenantPrompts
from src.shared.config import BudgetConfig
from src.shared.errors import PromptTemplateMissingError


def _history(n):
    return [
        f"Utilizador: pergunta numero {i}" if i % 2 == 0 else f"Assistente: resposta numero {i}"
        for i in range(n)
    ]


def test_budget_is_total_minus_reserve(tokenizer):
    manager = ContextBudgetManager.from_config(tokenizer, BudgetConfig())

    assert manager.token_budget == 3096
    assert manager.remaining == 3096


def test_reserve_must_be_below_total(tokenizer):
    with pytest.raises(ValueError):
        ContextBudgetManager(tokenizer=tokenizer, total_tokens=100, reserved_response_tokens=100)


def test_consume_beyond_remaining_raises(tokenizer):
    manager = ContextBudgetManager(tokenizer=tokenizer, total_tokens=20, reserved_response_tokens=10)
    manager.consume(8)

    with pytest.raises(BudgetExceeded):
        manager.consume(3)


def test_context_joins_match_texts(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer)
    matches = [make_match("a", text="primeiro"), make_match("b", text="segundo")]

    context = manager.build_context(matches, tenant)

    assert context.startswith("primeiro\n\n---\n\nsegundo")
    assert "Demo Imobiliária" in context


def test_zero_matches_yield_notice_naming_tenant(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer)

    assembled = manager.assemble(tenant=tenant, question="Olá", matches=[])

    assert assembled.context
    assert "Não invente" in assembled.context
    assert "Demo Imobiliária" in assembled.context


def test_aggregate_answer_is_appended(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer)

    context = manager.build_context(
        [make_match("a")], tenant, aggregate_answer="O mais barato custa 100€."
    )

    assert context.endswith("\n\nInformação Adicional:\nO mais barato custa 100€.")


def test_history_never_exceeds_budget_and_drops_oldest(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer, total_tokens=60, reserved_response_tokens=10)
    history = _history(20)

    assembled = manager.assemble(
        tenant=tenant,
        question="T2?",
        matches=[make_match("a", text="um dois tres")],
        chat_history="\n".join(history),
    )

    kept = assembled.kept_history_lines
    assert assembled.tokens_used <= 50
    assert 0 < len(kept) < len(history)
    # kept lines are the newest ones, in chronological order
    assert kept == history[-len(kept):]
    assert assembled.dropped_history_lines == len(history) - len(kept)


def test_history_walk_stops_at_first_line_that_does_not_fit(tokenizer, tenant):
    context_cost = tokenizer.count_tokens(
        ContextBudgetManager(tokenizer=tokenizer).build_context([make_match("a")], tenant)
    )
    # room for the context plus exactly two 4-token lines (remaining stays positive)
    manager = ContextBudgetManager(
        tokenizer=tokenizer, total_tokens=context_cost + 9, reserved_response_tokens=0
    )
    history = [
        "Utilizador: uma duas tres",
        "Assistente: quatro cinco seis",
        "Utilizador: sete oito nove",
    ]

    assembled = manager.assemble(
        tenant=tenant, question="?", matches=[make_match("a")], chat_history="\n".join(history)
    )

    assert assembled.kept_history_lines == history[1:]
    assert manager.remaining == 1


def _words(prefix, n):
    return " ".join(f"{prefix}{i}" for i in range(n))


def _reminder_cost(tokenizer, tenant):
    return tokenizer.count_tokens(TENANT_REMINDER.format(client_name=tenant.client_name))


def test_context_over_budget_keeps_whole_leading_chunks(tokenizer, tenant):
    # room for two 10-word chunks plus the separator between them
    budget = _reminder_cost(tokenizer, tenant) + 22
    manager = ContextBudgetManager(
        tokenizer=tokenizer, total_tokens=budget + 5, reserved_response_tokens=5
    )
    matches = [make_match(p, text=_words(p, 10)) for p in ("a", "b", "c")]

    assembled = manager.assemble(
        tenant=tenant,
        question="?",
        matches=matches,
        chat_history="Utilizador: olá\nAssistente: bom dia",
    )

    assert assembled.context.startswith(_words("a", 10) + "\n\n---\n\n" + _words("b", 10))
    assert "c0" not in assembled.context
    assert assembled.context.endswith(TENANT_REMINDER.format(client_name=tenant.client_name))
    assert assembled.tokens_used <= manager.token_budget
    assert assembled.kept_history_lines == []
    assert assembled.dropped_history_lines == 2


def test_oversized_first_chunk_is_cut_and_aggregate_kept(tokenizer, tenant):
    aggregate = "O mais barato custa 100€."
    tail_cost = tokenizer.count_tokens(
        TENANT_REMINDER.format(client_name=tenant.client_name)
        + ADDITIONAL_INFO_HEADER
        + aggregate
    )
    manager = ContextBudgetManager(
        tokenizer=tokenizer, total_tokens=tail_cost + 10, reserved_response_tokens=0
    )

    assembled = manager.assemble(
        tenant=tenant,
        question="?",
        matches=[make_match("a", text=_words("w", 50))],
        aggregate_answer=aggregate,
    )

    assert assembled.context.startswith(_words("w", 10))
    assert "w10" not in assembled.context
    assert assembled.context.endswith(aggregate)
    assert assembled.tokens_used <= manager.token_budget


def test_tokens_never_exceed_budget_even_for_tiny_budgets(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer, total_tokens=10, reserved_response_tokens=5)

    assembled = manager.assemble(
        tenant=tenant,
        question="?",
        matches=[make_match("a", text=_words("w", 50))],
        chat_history="Utilizador: olá\nAssistente: bom dia",
    )

    assert assembled.tokens_used <= 5
    assert assembled.turns == []


def test_context_within_budget_is_untouched(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer)
    matches = [make_match("a", text=_words("a", 10)), make_match("b", text=_words("b", 10))]

    assembled = manager.assemble(tenant=tenant, question="?", matches=matches)

    assert assembled.context == manager.build_context(matches, tenant)


def test_template_placeholders_and_defaults(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer)

    assembled = manager.assemble(
        tenant=tenant, question="Tem T2?", matches=[make_match("a", text="T2 no Porto")]
    )

    assert "Preferências: Não disponível" in assembled.system_prompt
    assert "Histórico: Nenhum histórico anterior disponível" in assembled.system_prompt
    assert "Contexto: T2 no Porto" in assembled.system_prompt
    assert "Pergunta: Tem T2?" in assembled.system_prompt


def test_onboarding_answers_and_history_rendered(tokenizer, tenant):
    manager = ContextBudgetManager(tokenizer=tokenizer)

    assembled = manager.assemble(
        tenant=tenant,
        question="?",
        matches=[],
        chat_history="Utilizador: olá\nAssistente: bom dia",
        onboarding_answers={"tipologia": "T2", "zonas": ["Porto", "Gaia"]},
    )

    assert "tipologia: T2\nzonas: Porto, Gaia" in assembled.system_prompt
    assert "Utilizador: olá\nAssistente: bom dia" in assembled.system_prompt


def test_missing_template_is_fatal(tokenizer, tenant):
    tenant = tenant.model_copy(update={"prompts": TenantPrompts(system_instruction="  ")})
    manager = ContextBudgetManager(tokenizer=tokenizer)

    with pytest.raises(PromptTemplateMissingError):
        manager.assemble(tenant=tenant, question="?", matches=[])


def test_render_template_is_single_pass():
    rendered = render_template(
        "{context} | {question}", {"context": "texto com {question}", "question": "Q"}
    )

    assert rendered == "texto com {question} | Q"


def test_parse_turns_keeps_labelled_lines_only():
    turns = parse_turns(
        ["Utilizador: olá", "linha solta", "Assistente: bom dia", "user: T2?", "assistant: Sim"]
    )

    assert [(t.role, t.content) for t in turns] == [
        (TurnRole.USER, "olá"),
        (TurnRole.ASSISTANT, "bom dia"),
        (TurnRole.USER, "T2?"),
        (TurnRole.ASSISTANT, "Sim"),
    ]


def test_structured_history_becomes_labelled_lines():
    lines = history_to_lines(
        [
            {"role": "user", "content": "Tem piscina?"},
            {"sender": "bot", "text": "Sim, tem."},
            {"role": "user", "content": ""},
        ]
    )

    assert lines == ["Utilizador: Tem piscina?", "Assistente: Sim, tem."]


def test_placeholder_history_text_is_empty():
    assert history_to_lines("Nenhum histórico anterior disponível") == []
    assert history_to_lines(None) == []
