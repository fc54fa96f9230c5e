from __future__ import annotations

from datetime import timedelta

import httpx
from sqlalchemy.orm import sessionmaker

from relay.core.timeutils import utcnow
from relay.errors import DispatchError
from relay.models.message_queue import FailedMessage, MessageQueue
from relay.queue import store
from relay.queue.backoff import BackoffPolicy
from relay.queue.processor import QueueProcessor
from relay.services.provider_config import EvolutionConfigLookup
from relay.whatsapp.evolution_provider import EvolutionWhatsAppProvider
from relay.whatsapp.service import WhatsAppService
from tests.fixtures_data import EMPRESA_ID, build_session, seed_tenant

NO_DELAY = BackoffPolicy(base_seconds=0, factor=2, max_seconds=0)

TEXT_PAYLOAD = {"telefone": "5511999990000", "mensagem": "Olá", "tipo": "texto", "empresaId": EMPRESA_ID}


class FailingSender:
    def __init__(self) -> None:
        self.calls = 0

    def send(self, db, payload):
        self.calls += 1
        raise DispatchError("Erro na Evolution API: 500", status_code=500)


class RecordingSender:
    def __init__(self) -> None:
        self.payloads: list[dict] = []

    def send(self, db, payload):
        self.payloads.append(payload)
        return None


def test_backoff_policy_grows_and_caps() -> None:
    policy = BackoffPolicy(base_seconds=30, factor=2, max_seconds=100)

    assert policy.delay(0) == timedelta(0)
    assert policy.delay(1) == timedelta(seconds=30)
    assert policy.delay(2) == timedelta(seconds=60)
    assert policy.delay(3) == timedelta(seconds=100)


def test_dequeue_respects_priority_and_schedule() -> None:
    db = build_session()
    low = store.enqueue(db, correlation_id="c-low", message_type="whatsapp_message", payload=TEXT_PAYLOAD, priority=0)
    high = store.enqueue(db, correlation_id="c-high", message_type="whatsapp_message", payload=TEXT_PAYLOAD, priority=5)
    store.enqueue(
        db,
        correlation_id="c-later",
        message_type="whatsapp_message",
        payload=TEXT_PAYLOAD,
        priority=9,
        scheduled_at=utcnow() + timedelta(hours=1),
    )

    first = store.dequeue_next(db)
    second = store.dequeue_next(db)
    third = store.dequeue_next(db)

    assert first.id == high.id
    assert first.status == "processing"
    assert second.id == low.id
    assert third is None


def test_claim_is_granted_to_a_single_consumer() -> None:
    db = build_session()
    entry = store.enqueue(db, correlation_id="c-1", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    other_consumer = sessionmaker(bind=db.get_bind())()

    assert store.claim(db, entry.id) is True
    assert store.claim(other_consumer, entry.id) is False
    assert store.dequeue_next(other_consumer) is None


def test_processor_marks_entry_done_on_success() -> None:
    db = build_session()
    entry = store.enqueue(db, correlation_id="c-1", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    sender = RecordingSender()

    outcome = QueueProcessor(sender=sender).run_once(db)

    db.refresh(entry)
    assert outcome.status == "done"
    assert entry.status == "done"
    assert entry.processed_at is not None
    assert sender.payloads == [TEXT_PAYLOAD]


def test_failures_are_retried_then_dead_lettered() -> None:
    db = build_session()
    entry = store.enqueue(
        db,
        correlation_id="c-1",
        message_type="whatsapp_message",
        payload=TEXT_PAYLOAD,
        max_retries=3,
    )
    sender = FailingSender()
    processor = QueueProcessor(sender=sender, backoff=NO_DELAY)

    statuses = [processor.run_once(db).status for _ in range(3)]

    db.refresh(entry)
    dead = db.query(FailedMessage).filter_by(original_message_id=entry.id).one()
    assert statuses == ["pending", "pending", "failed"]
    assert sender.calls == 3
    assert entry.status == "failed"
    assert entry.retry_count == 3
    assert dead.failure_count == 3
    assert dead.payload == TEXT_PAYLOAD
    assert dead.correlation_id == "c-1"
    assert processor.run_once(db) is None


def test_failed_entry_is_rescheduled_with_backoff() -> None:
    db = build_session()
    entry = store.enqueue(db, correlation_id="c-1", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    before = utcnow()

    QueueProcessor(sender=FailingSender(), backoff=BackoffPolicy(base_seconds=60, factor=2, max_seconds=600)).run_once(db)

    db.refresh(entry)
    assert entry.status == "pending"
    assert entry.retry_count == 1
    assert "500" in entry.error_message
    assert store.dequeue_next(db) is None
    assert store.queue_status(db).failed_with_retries == 1
    scheduled = entry.scheduled_at.replace(tzinfo=None)
    assert scheduled >= (before + timedelta(seconds=59)).replace(tzinfo=None)


def test_invalid_media_entry_is_routed_to_retry_without_sending() -> None:
    db = build_session()
    seed_tenant(db)
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"key": {"id": "x"}})

    provider = EvolutionWhatsAppProvider(client_factory=lambda: httpx.Client(transport=httpx.MockTransport(handler)))
    service = WhatsAppService(provider=provider, config_lookup=EvolutionConfigLookup())
    entry = store.enqueue(
        db,
        correlation_id="c-img",
        message_type="whatsapp_message",
        payload={"telefone": "5511999990000", "mensagem": "foto", "tipo": "imagem", "opcoes": {}, "empresaId": EMPRESA_ID},
    )

    outcome = QueueProcessor(sender=service, backoff=NO_DELAY).run_once(db)

    db.refresh(entry)
    assert outcome.status == "pending"
    assert "imageUrl" in entry.error_message
    assert requests == []


def test_purge_removes_only_old_finished_entries() -> None:
    db = build_session()
    old_done = store.enqueue(db, correlation_id="c-1", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    recent_done = store.enqueue(db, correlation_id="c-2", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    pending = store.enqueue(db, correlation_id="c-3", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    old_done.status = "done"
    old_done.processed_at = utcnow() - timedelta(hours=48)
    recent_done.status = "done"
    recent_done.processed_at = utcnow()
    db.commit()

    deleted = store.purge_finished(db, older_than=timedelta(hours=24))

    remaining = {row.id for row in db.query(MessageQueue).all()}
    assert deleted == 1
    assert remaining == {recent_done.id, pending.id}


def test_queue_status_counts() -> None:
    db = build_session()
    store.enqueue(db, correlation_id="c-1", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    done = store.enqueue(db, correlation_id="c-2", message_type="whatsapp_message", payload=TEXT_PAYLOAD)
    done.status = "done"
    db.commit()

    status = store.queue_status(db).as_dict()

    assert status["total_pending"] == 1
    assert status["total_done"] == 1
    assert status["total_failed"] == 0
    assert status["dead_letters"] == 0
    assert status["oldest_pending_age_seconds"] is not None
