from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import relay.deps as deps
from relay.core.database import get_db
from relay.errors import ConversationClaimError, SectorFullError
from relay.models.atendimento import Setor, Transferencia
from relay.models.chatbot import ChatbotSession
from relay.models.contato import Contato
from relay.models.conversa import Conversa
from relay.routers.conversas import router as conversas_router
from relay.services.atendimento import assumir_conversa, liberar_conversa, transferir_conversa
from tests.fixtures_data import EMPRESA_ID, build_session, seed_default_flow, seed_tenant


def _seed_conversa(db, **kwargs) -> Conversa:
    seed_tenant(db)
    contato = Contato(empresa_id=EMPRESA_ID, nome="Maria", telefone="5511999990000")
    db.add(contato)
    db.flush()
    conversa = Conversa(empresa_id=EMPRESA_ID, contato_id=contato.id, status="ativo", **kwargs)
    db.add(conversa)
    db.commit()
    return conversa


def test_only_one_agent_can_claim_a_conversation() -> None:
    db = build_session()
    conversa = _seed_conversa(db)

    assert assumir_conversa(db, conversa.id, "agente-a") is True
    assert assumir_conversa(db, conversa.id, "agente-b") is False

    db.expire_all()
    conversa = db.get(Conversa, conversa.id)
    assert conversa.agente_id == "agente-a"
    assert conversa.status == "em-atendimento"


def test_release_puts_conversation_back_in_waiting_state() -> None:
    db = build_session()
    conversa = _seed_conversa(db, agente_id="agente-a")

    assert liberar_conversa(db, conversa.id, "agente-b") is False
    assert liberar_conversa(db, conversa.id, "agente-a") is True

    db.expire_all()
    conversa = db.get(Conversa, conversa.id)
    assert conversa.agente_id is None
    assert conversa.status == "aguardando"


def test_transfer_requires_current_owner_and_records_history() -> None:
    db = build_session()
    conversa = _seed_conversa(db, agente_id="agente-a")

    with pytest.raises(ConversationClaimError):
        transferir_conversa(db, conversa.id, de_agente_id="agente-b", para_agente_id="agente-c")

    transferencia = transferir_conversa(
        db, conversa.id, de_agente_id="agente-a", para_agente_id="agente-c", motivo="Cliente pediu financeiro"
    )

    db.expire_all()
    conversa = db.get(Conversa, conversa.id)
    assert conversa.agente_id == "agente-c"
    assert transferencia.de_agente_id == "agente-a"
    assert db.query(Transferencia).count() == 1


def test_transfer_to_full_sector_is_refused() -> None:
    db = build_session()
    conversa = _seed_conversa(db, agente_id="agente-a")
    db.add(Setor(empresa_id=EMPRESA_ID, nome="suporte", ativo=True, capacidade_maxima=2, atendimentos_ativos=2))
    db.commit()

    with pytest.raises(SectorFullError):
        transferir_conversa(db, conversa.id, de_agente_id="agente-a", setor="suporte")

    db.expire_all()
    assert db.get(Conversa, conversa.id).agente_id == "agente-a"
    assert db.query(Transferencia).count() == 0


def test_conversas_routes(monkeypatch) -> None:
    monkeypatch.setattr(deps, "INTERNAL_API_TOKEN", "")
    db = build_session()
    conversa = _seed_conversa(db)
    app = FastAPI()
    app.include_router(conversas_router)
    app.dependency_overrides[get_db] = lambda: db
    client = TestClient(app)

    claimed = client.post(f"/api/conversas/{conversa.id}/assumir", json={"agente_id": "agente-a"})
    conflict = client.post(f"/api/conversas/{conversa.id}/assumir", json={"agente_id": "agente-b"})
    transferred = client.post(
        f"/api/conversas/{conversa.id}/transferir",
        json={"de_agente_id": "agente-a", "setor": "vendas"},
    )
    missing = client.post("/api/conversas/nao-existe/liberar", json={})

    assert claimed.status_code == 200
    assert conflict.status_code == 409
    assert transferred.status_code == 200
    assert missing.status_code == 404
    db.expire_all()
    conversa = db.get(Conversa, conversa.id)
    assert conversa.setor == "vendas"
    assert conversa.agente_id is None
    assert conversa.status == "aguardando"


def test_claim_and_transfer_end_the_active_chatbot_session() -> None:
    db = build_session()
    claimed = _seed_conversa(db)
    flow = seed_default_flow(db)
    transferred = Conversa(empresa_id=EMPRESA_ID, contato_id=claimed.contato_id, status="ativo", agente_id="agente-a")
    db.add(transferred)
    db.flush()
    db.add_all(
        [
            ChatbotSession(conversa_id=claimed.id, flow_id=flow.id, current_node_id="menu", status="ativo"),
            ChatbotSession(conversa_id=transferred.id, flow_id=flow.id, current_node_id="menu", status="ativo"),
        ]
    )
    db.commit()

    assert assumir_conversa(db, claimed.id, "agente-b") is True
    transferir_conversa(db, transferred.id, de_agente_id="agente-a", setor="vendas")

    db.expire_all()
    sessions = {s.conversa_id: s.status for s in db.query(ChatbotSession).all()}
    assert sessions == {claimed.id: "transferido", transferred.id: "transferido"}


def test_lost_claim_keeps_chatbot_session_untouched() -> None:
    db = build_session()
    conversa = _seed_conversa(db, agente_id="agente-a")
    flow = seed_default_flow(db)
    db.add(ChatbotSession(conversa_id=conversa.id, flow_id=flow.id, current_node_id="menu", status="ativo"))
    db.commit()

    assert assumir_conversa(db, conversa.id, "agente-b") is False

    db.expire_all()
    assert db.query(ChatbotSession).one().status == "ativo"
