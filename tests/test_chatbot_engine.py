from __future__ import annotations

from relay.chatbot.engine import ChatbotEngine, build_prompt_payload
from relay.models.atendimento import Transferencia
from relay.models.chatbot import ChatbotFlow, ChatbotNode, ChatbotOption, ChatbotSession
from relay.models.conversa import Conversa
from relay.models.message_queue import MessageQueue
from relay.services.atendimento import assumir_conversa
from relay.services.resolver import ConversationResolver
from relay.whatsapp.normalizer import normalize_webhook
from tests.fixtures_data import (
    EMPRESA_ID,
    WELCOME_PROMPT,
    build_session,
    button_webhook,
    seed_default_flow,
    seed_tenant,
    text_webhook,
)


def _start_conversation(db, engine: ChatbotEngine):
    event = normalize_webhook(text_webhook("Oi", message_id="M1"))
    resolution = ConversationResolver().resolve(db, event)
    conversa = db.get(Conversa, resolution.conversa_id)
    outcome = engine.handle(db, conversa, event, is_new=resolution.is_new_conversation)
    return conversa, outcome


def _queued_payloads(db) -> list[dict]:
    return [entry.payload for entry in db.query(MessageQueue).order_by(MessageQueue.created_at.asc()).all()]


def test_new_conversation_starts_default_flow_and_enqueues_welcome_prompt() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)

    conversa, outcome = _start_conversation(db, ChatbotEngine())

    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    payloads = _queued_payloads(db)
    assert outcome.action == "started"
    assert chat_session.status == "ativo"
    assert chat_session.current_node_id == "menu"
    assert len(payloads) == 1
    assert payloads[0]["mensagem"] == WELCOME_PROMPT
    assert payloads[0]["telefone"] == "5511999990000"
    assert payloads[0]["empresaId"] == EMPRESA_ID
    assert payloads[0]["tipo"] == "botoes"
    assert [b["id"] for b in payloads[0]["opcoes"]["botoes"]] == ["1", "2"]


def test_button_response_transfers_conversation_to_sector() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)

    outcome = engine.handle(
        db,
        conversa,
        normalize_webhook(button_webhook("1", "Suporte", message_id="M2")),
        is_new=False,
    )

    db.expire_all()
    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    conversa = db.get(Conversa, conversa.id)
    payloads = _queued_payloads(db)
    assert outcome.action == "transferred"
    assert chat_session.status == "transferido"
    assert conversa.setor == "suporte"
    assert conversa.agente_id is None
    assert len(payloads) == 2
    assert payloads[1]["mensagem"] == "Aguarde, um atendente do suporte vai falar com você."
    assert db.query(Transferencia).filter_by(conversa_id=conversa.id, motivo="chatbot").count() == 1
    assert chat_session.session_data["respostas"][0]["option_id"] == "1"


def test_text_answer_moves_to_next_node_and_terminal_node_finishes() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)

    moved = engine.handle(db, conversa, normalize_webhook(text_webhook("vendas", message_id="M2")), is_new=False)
    finished = engine.handle(db, conversa, normalize_webhook(text_webhook("1", message_id="M3")), is_new=False)

    db.expire_all()
    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    payloads = _queued_payloads(db)
    assert moved.action == "advanced"
    assert finished.action == "finished"
    assert chat_session.current_node_id == "fim"
    assert chat_session.status == "finalizado"
    assert payloads[-1]["mensagem"] == "Obrigado pelo contato!"
    assert len(chat_session.session_data["respostas"]) == 2


def test_unmatched_answer_resends_prompt_with_prefix() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine(not_understood_prefix="Não entendi.")
    conversa, _ = _start_conversation(db, engine)

    outcome = engine.handle(db, conversa, normalize_webhook(text_webhook("quero pizza", message_id="M2")), is_new=False)

    db.expire_all()
    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    payloads = _queued_payloads(db)
    assert outcome.action == "not_understood"
    assert chat_session.status == "ativo"
    assert chat_session.current_node_id == "menu"
    assert payloads[-1]["mensagem"] == f"Não entendi.\n\n{WELCOME_PROMPT}"


def test_finalizar_option_ends_session_with_closing_message() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)
    engine.handle(db, conversa, normalize_webhook(text_webhook("2", message_id="M2")), is_new=False)

    outcome = engine.handle(db, conversa, normalize_webhook(text_webhook("Encerrar", message_id="M3")), is_new=False)

    db.expire_all()
    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    assert outcome.action == "finished"
    assert chat_session.status == "finalizado"
    assert _queued_payloads(db)[-1]["mensagem"] == "Até logo!"


def test_dangling_node_reference_finishes_session_without_raising() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)
    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    chat_session.current_node_id = "node-apagado"
    db.commit()

    outcome = engine.handle(db, conversa, normalize_webhook(text_webhook("1", message_id="M2")), is_new=False)

    db.expire_all()
    assert outcome.action == "error"
    assert db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one().status == "finalizado"
    assert len(_queued_payloads(db)) == 1


def test_option_pointing_to_missing_node_finishes_session() -> None:
    db = build_session()
    seed_tenant(db)
    flow = seed_default_flow(db)
    option = (
        db.query(ChatbotOption)
        .join(ChatbotNode, ChatbotOption.node_id == ChatbotNode.id)
        .filter(ChatbotNode.flow_id == flow.id, ChatbotOption.option_id == "2")
        .one()
    )
    option.proximo_node_id = "inexistente"
    db.commit()
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)

    outcome = engine.handle(db, conversa, normalize_webhook(text_webhook("2", message_id="M2")), is_new=False)

    db.expire_all()
    assert outcome.action == "error"
    assert db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one().status == "finalizado"


def test_no_flow_means_no_session() -> None:
    db = build_session()
    seed_tenant(db)

    conversa, outcome = _start_conversation(db, ChatbotEngine())

    assert outcome.action == "no_flow"
    assert db.query(ChatbotSession).count() == 0
    assert db.query(MessageQueue).count() == 0


def test_trigger_conditions_win_over_default_flow() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    promo = ChatbotFlow(
        empresa_id=EMPRESA_ID,
        nome="Promoção",
        status="ativo",
        is_default=False,
        priority=10,
        trigger_conditions={"keywords": ["promoção"]},
    )
    db.add(promo)
    db.flush()
    db.add(ChatbotNode(flow_id=promo.id, node_id="promo", mensagem="Confira nossas ofertas!", tipo_resposta="fim"))
    db.commit()
    engine = ChatbotEngine()

    event = normalize_webhook(text_webhook("Quero saber da promocao", message_id="M1"))
    assert engine.select_flow(db, EMPRESA_ID, event).id == promo.id

    other = normalize_webhook(text_webhook("Oi", message_id="M2"))
    assert engine.select_flow(db, EMPRESA_ID, other).nome == "Atendimento"


def test_lista_prompt_builds_single_section() -> None:
    node = ChatbotNode(node_id="menu", nome="Menu", mensagem="Escolha", tipo_resposta="lista")
    node.options = [
        ChatbotOption(option_id="a", texto="Opção A", ordem=0),
        ChatbotOption(option_id="b", texto="Opção B", ordem=1),
    ]

    payload = build_prompt_payload(node, telefone="5511999990000", empresa_id=EMPRESA_ID)

    assert payload["tipo"] == "lista"
    sections = payload["opcoes"]["lista"]["sections"]
    assert len(sections) == 1
    assert [row["id"] for row in sections[0]["rows"]] == ["a", "b"]


def test_agent_claim_ends_session_and_bot_stays_silent() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)

    assert assumir_conversa(db, conversa.id, "agente-7") is True
    outcome = engine.handle(
        db, conversa, normalize_webhook(text_webhook("quero falar com voce", message_id="M2")), is_new=False
    )

    db.expire_all()
    assert outcome.action == "ignored"
    assert db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one().status == "transferido"
    assert len(_queued_payloads(db)) == 1


def test_agent_owned_conversation_is_not_advanced_even_with_active_session() -> None:
    db = build_session()
    seed_tenant(db)
    seed_default_flow(db)
    engine = ChatbotEngine()
    conversa, _ = _start_conversation(db, engine)
    conversa.agente_id = "agente-7"
    db.commit()

    outcome = engine.handle(db, conversa, normalize_webhook(text_webhook("1", message_id="M2")), is_new=False)

    db.expire_all()
    chat_session = db.query(ChatbotSession).filter_by(conversa_id=conversa.id).one()
    assert outcome.action == "ignored"
    assert chat_session.status == "ativo"
    assert chat_session.current_node_id == "menu"
    assert len(_queued_payloads(db)) == 1
