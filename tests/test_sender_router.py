from __future__ import annotations

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

import relay.deps as deps
from relay.core.database import get_db
from relay.routers.sender import get_whatsapp_service, router as sender_router
from relay.whatsapp.evolution_provider import EvolutionWhatsAppProvider
from relay.whatsapp.service import WhatsAppService
from tests.fixtures_data import EMPRESA_ID, INSTANCE_NAME, build_session, seed_tenant


def _build_client(db, handler) -> TestClient:
    provider = EvolutionWhatsAppProvider(client_factory=lambda: httpx.Client(transport=httpx.MockTransport(handler)))
    app = FastAPI()
    app.include_router(sender_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_whatsapp_service] = lambda: WhatsAppService(provider=provider)
    return TestClient(app)


def test_send_text_returns_provider_response(monkeypatch) -> None:
    monkeypatch.setattr(deps, "INTERNAL_API_TOKEN", "")
    db = build_session()
    seed_tenant(db)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201, json={"key": {"id": "WA-1"}})

    client = _build_client(db, handler)
    response = client.post(
        "/api/chatbot/send",
        json={"telefone": "5511999990000", "mensagem": "Olá", "tipo": "texto", "empresaId": EMPRESA_ID},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["evolutionResponse"] == {"key": {"id": "WA-1"}}
    assert response.json()["data"] == {"key": {"id": "WA-1"}}
    assert calls[0].url.path == f"/message/sendText/{INSTANCE_NAME}"


def test_validation_failure_returns_500_without_http(monkeypatch) -> None:
    monkeypatch.setattr(deps, "INTERNAL_API_TOKEN", "")
    db = build_session()
    seed_tenant(db)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201, json={"key": {"id": "WA-1"}})

    client = _build_client(db, handler)
    response = client.post(
        "/api/chatbot/send",
        json={"telefone": "5511999990000", "tipo": "imagem", "instanceName": INSTANCE_NAME},
    )

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "imageUrl" in response.json()["error"]
    assert calls == []


def test_provider_error_is_reported(monkeypatch) -> None:
    monkeypatch.setattr(deps, "INTERNAL_API_TOKEN", "")
    db = build_session()
    seed_tenant(db)

    client = _build_client(db, lambda request: httpx.Response(401, json={"message": "Unauthorized"}))
    response = client.post(
        "/api/chatbot/send",
        json={"telefone": "5511999990000", "mensagem": "Olá", "instanceName": INSTANCE_NAME},
    )

    assert response.status_code == 500
    assert response.json()["evolutionResponse"] == {"message": "Unauthorized"}


def test_internal_token_is_enforced_when_configured(monkeypatch) -> None:
    monkeypatch.setattr(deps, "INTERNAL_API_TOKEN", "segredo")
    db = build_session()
    seed_tenant(db)
    client = _build_client(db, lambda request: httpx.Response(201, json={"key": {"id": "WA-1"}}))
    body = {"telefone": "5511999990000", "mensagem": "Olá", "empresaId": EMPRESA_ID}

    denied = client.post("/api/chatbot/send", json=body)
    allowed = client.post("/api/chatbot/send", json=body, headers={"X-Internal-Token": "segredo"})

    assert denied.status_code == 401
    assert allowed.status_code == 200


def test_unset_token_in_production_is_unavailable(monkeypatch) -> None:
    monkeypatch.setattr(deps, "INTERNAL_API_TOKEN", "")
    monkeypatch.setattr(deps, "IS_PROD", True)
    db = build_session()
    client = _build_client(db, lambda request: httpx.Response(201, json={"key": {"id": "WA-1"}}))

    response = client.post("/api/chatbot/send", json={"telefone": "5511999990000", "empresaId": EMPRESA_ID})

    assert response.status_code == 503
