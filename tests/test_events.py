from __future__ import annotations

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from msp.domain.models import EventEnvelope, EventRecord
from msp.infra import events
from msp.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="credit.issued",
        tenant_id="tenant-a",
        payload={"credit_id": "credit-1", "amount": 1250},
    )
    bus.subscribe("credit.issued", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload == {"credit_id": "credit-1", "amount": 1250}
    assert seen == [event.event_id]


def test_event_bus_wildcard_and_failing_handler(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(events, "engine", engine)

    bus = EventBus()
    seen: list[str] = []

    def broken(_event: EventEnvelope) -> None:
        raise RuntimeError("handler failure")

    def wildcard(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("usage.recorded", broken)
    bus.subscribe("*", wildcard)

    published = bus.publish_dict("usage.recorded", "tenant-a", {"usage_id": "usage-1"}, actor_id="user-1")

    assert seen == ["usage.recorded"]
    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()
    assert [item.event_id for item in stored] == [published.event_id]
    assert stored[0].actor_id == "user-1"

    bus.unsubscribe("*", wildcard)
    bus.publish_dict("usage.recorded", "tenant-a", {"usage_id": "usage-2"})
    assert seen == ["usage.recorded"]
