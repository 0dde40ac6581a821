"""
Tests for the gate: credential validation and compare-and-set check-in.
"""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import Update
from sqlalchemy.ext.asyncio import AsyncSession

from gatepass.core.config import get_settings
from gatepass.models.registration import Registration
from gatepass.services import registration_service
from gatepass.services.credential_service import mint_credential


@pytest.mark.asyncio
async def test_validate_returns_admission_view(client, operator_headers, paid_registration, vendor, test_event, test_vehicle):
    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": paid_registration.credential},
        headers=operator_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["registration"]["id"] == paid_registration.id
    assert data["registration"]["checked_in"] is False
    assert data["vehicle"]["make"] == "Porsche"
    assert data["event"]["name"] == test_event.name
    assert data["user"]["email"] == vendor.email


@pytest.mark.asyncio
async def test_validate_does_not_check_in(client, operator_headers, paid_registration, session_factory):
    for _ in range(2):
        response = await client.post(
            "/api/v1/checkin/validate",
            json={"credential": paid_registration.credential},
            headers=operator_headers,
        )
        assert response.status_code == 200

    async with session_factory() as session:
        registration = await session.get(Registration, paid_registration.id)
    assert registration.checked_in is False
    assert registration.checked_in_at is None


@pytest.mark.asyncio
async def test_validate_tolerates_scanner_whitespace(client, operator_headers, paid_registration):
    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": f"  {paid_registration.credential}\n"},
        headers=operator_headers,
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_validate_unknown_credential(client, operator_headers, paid_registration, session_factory):
    """Correctly signed, but never issued."""
    unissued = mint_credential(paid_registration.user_id, paid_registration.event_id, paid_registration.vehicle_id, 42)
    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": unissued},
        headers=operator_headers,
    )

    assert response.status_code == 404
    assert response.json()["error"] == "CredentialNotFound"

    async with session_factory() as session:
        registration = await session.get(Registration, paid_registration.id)
    assert registration.checked_in is False


@pytest.mark.asyncio
async def test_validate_garbage_credential(client, operator_headers, paid_registration):
    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": "bogus-token"},
        headers=operator_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "MalformedCredential"


@pytest.mark.asyncio
async def test_validate_forged_credential(client, operator_headers, paid_registration):
    """A pass with a guessed signature is rejected before any lookup."""
    body = paid_registration.credential.split(".")[0]
    forged = f"{body}.{'0' * 32}"

    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": forged},
        headers=operator_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"] == "CredentialForged"


@pytest.mark.asyncio
async def test_first_check_in_then_repeat(client, operator_headers, paid_registration):
    first = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)
    second = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["already_checked_in"] is False
    assert second.json()["already_checked_in"] is True
    assert first.json()["checked_in_at"] is not None
    assert second.json()["checked_in_at"] == first.json()["checked_in_at"]


@pytest.mark.asyncio
async def test_check_in_records_operator(client, operator, operator_headers, paid_registration, session_factory):
    await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)

    async with session_factory() as session:
        registration = await session.get(Registration, paid_registration.id)
    assert registration.checked_in is True
    assert registration.checked_in_by == operator.id
    assert registration.checked_in_at is not None


@pytest.mark.asyncio
async def test_concurrent_check_ins_admit_once(client, operator_headers, paid_registration):
    """Several gate devices scan the same pass at once: exactly one admits."""
    responses = await asyncio.gather(*[
        client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)
        for _ in range(5)
    ])

    assert [r.status_code for r in responses] == [200] * 5
    flags = sorted(r.json()["already_checked_in"] for r in responses)
    assert flags == [False] + [True] * 4
    assert len({r.json()["checked_in_at"] for r in responses}) == 1


@pytest.mark.asyncio
async def test_check_in_is_monotonic(client, operator_headers, paid_registration):
    await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)

    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": paid_registration.credential},
        headers=operator_headers,
    )
    assert response.json()["registration"]["checked_in"] is True


@pytest.mark.asyncio
async def test_check_in_unknown_registration(client, operator_headers, paid_registration):
    response = await client.post("/api/v1/checkin/99999", headers=operator_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "RegistrationNotFound"


@pytest.mark.asyncio
async def test_vendor_cannot_operate_gate(client, vendor_headers, paid_registration):
    validate = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": paid_registration.credential},
        headers=vendor_headers,
    )
    admit = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=vendor_headers)

    assert validate.status_code == 403
    assert admit.status_code == 403


@pytest.mark.asyncio
async def test_gate_requires_authentication(client, paid_registration):
    response = await client.post(f"/api/v1/checkin/{paid_registration.id}")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_slow_store_is_retryable(client, monkeypatch, operator_headers, paid_registration):
    """A lookup exceeding the timeout answers 503 instead of hanging the gate."""

    async def slow_lookup(db, credential):
        await asyncio.sleep(5)

    monkeypatch.setattr(get_settings(), "CHECKIN_LOOKUP_TIMEOUT", 0.05)
    monkeypatch.setattr(registration_service, "get_by_credential", slow_lookup)

    response = await client.post(
        "/api/v1/checkin/validate",
        json={"credential": paid_registration.credential},
        headers=operator_headers,
    )
    assert response.status_code == 503
    assert response.json()["error"] == "StoreUnavailable"


@pytest.mark.asyncio
async def test_slow_commit_still_reports_first_admit(client, monkeypatch, operator_headers, paid_registration):
    """The commit outlasting the lookup timeout must not turn a real admit into a 503."""
    original_commit = AsyncSession.commit

    async def slow_commit(self):
        await asyncio.sleep(0.2)
        await original_commit(self)

    with monkeypatch.context() as m:
        m.setattr(get_settings(), "CHECKIN_LOOKUP_TIMEOUT", 0.05)
        m.setattr(AsyncSession, "commit", slow_commit)
        response = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)

    assert response.status_code == 200
    assert response.json()["already_checked_in"] is False

    retry = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)
    assert retry.json()["already_checked_in"] is True


@pytest.mark.asyncio
async def test_slow_update_is_retryable_and_admits_nothing(
    client, monkeypatch, operator_headers, paid_registration, session_factory
):
    original_execute = AsyncSession.execute

    async def slow_update(self, statement, *args, **kwargs):
        if isinstance(statement, Update):
            await asyncio.sleep(5)
        return await original_execute(self, statement, *args, **kwargs)

    with monkeypatch.context() as m:
        m.setattr(get_settings(), "CHECKIN_LOOKUP_TIMEOUT", 0.05)
        m.setattr(AsyncSession, "execute", slow_update)
        response = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)

    assert response.status_code == 503

    async with session_factory() as session:
        registration = await session.get(Registration, paid_registration.id)
    assert registration.checked_in is False

    retry = await client.post(f"/api/v1/checkin/{paid_registration.id}", headers=operator_headers)
    assert retry.status_code == 200
    assert retry.json()["already_checked_in"] is False


@pytest.mark.asyncio
async def test_mark_checked_in_compare_and_set(session_factory, paid_registration, operator):
    """Store-level: the first conditional update affects one row, later ones none."""
    now = datetime.now(timezone.utc)
    async with session_factory() as first, session_factory() as second:
        assert await registration_service.mark_checked_in(first, paid_registration.id, operator.id, now) == 1
        assert await registration_service.mark_checked_in(second, paid_registration.id, operator.id, now) == 0
        assert await registration_service.mark_checked_in(second, 99999, operator.id, now) == 0
