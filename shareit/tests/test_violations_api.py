import json

import pytest

from shareit.common.enums import OrderStatus


def _items_form(item_id, penalty="40") -> dict:
    return {
        "items": json.dumps([{
            "order_item_id": str(item_id),
            "violation_type": "damaged",
            "description": "Torn hem on the left side",
            "damage_percentage": "30",
            "penalty_percentage": "20",
            "penalty_amount": penalty,
        }]),
    }


async def _report(client, headers, order_id, item_id, penalty="40"):
    return await client.post(
        f"/api/v1/orders/{order_id}/violations",
        headers=headers,
        data=_items_form(item_id, penalty),
        files=[("evidence_0", ("tear.jpg", b"\xff" * 1024, "image/jpeg"))],
    )


@pytest.mark.asyncio
async def test_report_via_multipart(client, provider_headers, make_order):
    order_id, (item_id,) = await make_order()

    response = await _report(client, provider_headers, order_id, item_id)

    assert response.status_code == 201
    data = response.json()
    assert len(data) == 1
    assert data[0]["status"] == "pending"
    assert data[0]["status_label"] == "Awaiting customer response"
    assert data[0]["order_id"] == str(order_id)


@pytest.mark.asyncio
async def test_report_without_evidence_rejected(client, provider_headers, make_order):
    order_id, (item_id,) = await make_order()

    response = await client.post(
        f"/api/v1/orders/{order_id}/violations",
        headers=provider_headers,
        data=_items_form(item_id),
        files=[("unrelated", ("x.txt", b"x", "text/plain"))],
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_report_with_invalid_item_payload(client, provider_headers, make_order):
    order_id, (item_id,) = await make_order()
    form = _items_form(item_id)
    payload = json.loads(form["items"])
    payload[0]["description"] = "short"

    response = await client.post(
        f"/api/v1/orders/{order_id}/violations",
        headers=provider_headers,
        data={"items": json.dumps(payload)},
        files=[("evidence_0", ("tear.jpg", b"\xff" * 1024, "image/jpeg"))],
    )
    assert response.status_code == 400
    assert "description" in response.json()["detail"]


@pytest.mark.asyncio
async def test_customer_cannot_report(client, customer_headers, make_order):
    order_id, (item_id,) = await make_order()

    response = await _report(client, customer_headers, order_id, item_id)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_missing_token_rejected(client, make_order):
    order_id, (item_id,) = await make_order()

    response = await client.get(f"/api/v1/orders/{order_id}/violations")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_accept_queues_settlement(
    client, provider_headers, customer_headers, make_order, mock_celery_tasks
):
    order_id, (item_id,) = await make_order()
    violation_id = (await _report(client, provider_headers, order_id, item_id)).json()[0]["id"]

    response = await client.post(
        f"/api/v1/violations/{violation_id}/respond",
        headers=customer_headers,
        data={"accepted": "true"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "customer_accepted"
    mock_celery_tasks.assert_called_once_with(violation_id)


@pytest.mark.asyncio
async def test_reject_requires_notes(client, provider_headers, customer_headers, make_order):
    order_id, (item_id,) = await make_order()
    violation_id = (await _report(client, provider_headers, order_id, item_id)).json()[0]["id"]

    response = await client.post(
        f"/api/v1/violations/{violation_id}/respond",
        headers=customer_headers,
        data={"accepted": "false"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_reject_revise_escalate_flow(
    client, provider_headers, customer_headers, make_order, mock_celery_tasks
):
    order_id, (item_id,) = await make_order()
    violation_id = (await _report(client, provider_headers, order_id, item_id)).json()[0]["id"]

    response = await client.post(
        f"/api/v1/violations/{violation_id}/respond",
        headers=customer_headers,
        data={"accepted": "false", "notes": "It was already torn"},
        files=[("evidence", ("pickup.mp4", b"\x00" * 2048, "video/mp4"))],
    )
    assert response.status_code == 200
    assert response.json()["customer_notes"] == "It was already torn"

    response = await client.patch(
        f"/api/v1/violations/{violation_id}",
        headers=provider_headers,
        json={"penalty_amount": "20"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert response.json()["customer_notes"] is None

    response = await client.post(
        f"/api/v1/violations/{violation_id}/escalate",
        headers=customer_headers,
        json={"reason": "Still not my fault"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "pending_admin_review"
    assert response.json()["customer_escalation_reason"] == "Still not my fault"
    mock_celery_tasks.assert_not_called()


@pytest.mark.asyncio
async def test_patch_rejects_explicit_null_amount(
    client, provider_headers, customer_headers, make_order
):
    order_id, (item_id,) = await make_order()
    violation_id = (await _report(client, provider_headers, order_id, item_id)).json()[0]["id"]

    response = await client.patch(
        f"/api/v1/violations/{violation_id}",
        headers=provider_headers,
        json={"penalty_amount": None},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_detail_visible_to_parties_only(
    client, provider_headers, customer_headers, admin_headers, other_customer, make_order
):
    from shareit.common.security import create_access_token

    order_id, (item_id,) = await make_order()
    violation_id = (await _report(client, provider_headers, order_id, item_id)).json()[0]["id"]
    stranger = {"Authorization": f"Bearer {create_access_token({'sub': str(other_customer.id)})}"}

    for headers in (provider_headers, customer_headers, admin_headers):
        response = await client.get(f"/api/v1/violations/{violation_id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["deposit_amount"] == "500000.00"

    response = await client.get(f"/api/v1/violations/{violation_id}", headers=stranger)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_mine_and_by_order(client, provider_headers, customer_headers, make_order):
    order_id, (item_id,) = await make_order()
    await _report(client, provider_headers, order_id, item_id)

    mine = await client.get("/api/v1/violations/mine", headers=customer_headers)
    assert mine.status_code == 200
    assert len(mine.json()) == 1

    by_order = await client.get(f"/api/v1/orders/{order_id}/violations", headers=provider_headers)
    assert by_order.status_code == 200
    assert by_order.json()[0]["order_item_id"] == str(item_id)


@pytest.mark.asyncio
async def test_report_on_in_transit_order_rejected(client, provider_headers, make_order):
    order_id, (item_id,) = await make_order(status=OrderStatus.IN_TRANSIT)

    response = await _report(client, provider_headers, order_id, item_id)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_health_reports_storage(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["storage"] == "ok"
    assert "X-Response-Time-Ms" in response.headers
