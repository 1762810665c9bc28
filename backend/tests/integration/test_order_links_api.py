"""API tests for order link and provider order endpoints"""

from uuid import uuid4

from models.order_link import LinkStatus, LinkType
from reconciliation.lifecycle import LinkLifecycleManager

OPERATOR = {"X-Operator-Id": "alex@shop.test"}


def create_link(client, provider_order_id, storefront_order_id=None, **extra):
    body = {"provider_order_id": provider_order_id, "storefront_order_id": storefront_order_id, **extra}
    return client.post("/api/v1/order-links", json=body, headers=OPERATOR)


class TestCreateOrderLink:
    """Test POST /api/v1/order-links"""

    def test_create_manual_link(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()

        response = create_link(client, po.id, so.id, notes="Matched by phone")

        assert response.status_code == 201
        data = response.json()
        assert data["provider_order_id"] == po.id
        assert data["storefront_order_id"] == so.id
        assert data["link_status"] == "active"
        assert data["link_type"] == "manual_system"
        assert data["classification"] == "normal"
        assert data["linked_by"] == "alex@shop.test"
        assert data["notes"] == "Matched by phone"

    def test_second_active_link_conflicts(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        s1 = make_storefront_order()
        s2 = make_storefront_order()
        assert create_link(client, po.id, s1.id).status_code == 201

        response = create_link(client, po.id, s2.id)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "conflict"
        assert set(body) == {"error", "message", "details"}

    def test_gift_classification(self, client, make_provider_order):
        po = make_provider_order()

        response = create_link(client, po.id, classification="gift", notes="Influencer box")

        assert response.status_code == 201
        data = response.json()
        assert data["classification"] == "gift"
        assert data["storefront_order_id"] is None
        assert data["link_status"] == "active"

    def test_user_override_link_type(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()

        response = create_link(client, po.id, so.id, link_type="manual_user_override")

        assert response.status_code == 201
        assert response.json()["link_type"] == "manual_user_override"

    def test_automatic_link_type_rejected(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()

        response = create_link(client, po.id, so.id, link_type="automatic")

        assert response.status_code == 422
        assert response.json()["details"]["rule"] == "operator_link_type"
        assert client.get(f"/api/v1/order-links/storefront/{so.id}").json()["links"] == []

    def test_gift_keeps_requested_link_type(self, client, make_provider_order):
        po = make_provider_order()
        response = create_link(client, po.id, classification="gift", link_type="manual_user_override")
        assert response.status_code == 201
        assert response.json()["link_type"] == "manual_user_override"

    def test_normal_link_requires_storefront_order(self, client, make_provider_order):
        po = make_provider_order()
        response = create_link(client, po.id)
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_unknown_provider_order(self, client, make_storefront_order):
        so = make_storefront_order()
        response = create_link(client, 999999, so.id)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_malformed_body(self, client):
        response = client.post("/api/v1/order-links", json={"storefront_order_id": "abc"})
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]

    def test_unknown_classification(self, client, make_provider_order):
        po = make_provider_order()
        response = create_link(client, po.id, classification="refund")
        assert response.status_code == 422


class TestUpdateOrderLink:
    """Test PATCH/confirm/DELETE on /api/v1/order-links/{id}"""

    def test_update_notes_only(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()
        link_id = create_link(client, po.id, so.id).json()["id"]

        response = client.patch(f"/api/v1/order-links/{link_id}", json={"notes": "double-checked"})

        assert response.status_code == 200
        data = response.json()
        assert data["notes"] == "double-checked"
        assert data["storefront_order_id"] == so.id

    def test_retarget_storefront_order(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        s1 = make_storefront_order()
        s2 = make_storefront_order()
        link_id = create_link(client, po.id, s1.id).json()["id"]

        response = client.patch(
            f"/api/v1/order-links/{link_id}",
            json={"storefront_order_id": s2.id},
            headers={"X-Operator-Id": "sam"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["storefront_order_id"] == s2.id
        assert data["link_type"] == "manual_user_override"
        assert data["link_status"] == "active"
        assert data["linked_by"] == "sam"

    def test_update_unknown_link(self, client):
        response = client.patch(f"/api/v1/order-links/{uuid4()}", json={"notes": "x"})
        assert response.status_code == 404

    def test_invalid_link_id(self, client):
        response = client.patch("/api/v1/order-links/not-a-uuid", json={"notes": "x"})
        assert response.status_code == 422

    def test_confirm_pending_link(self, client, db_session, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()
        pending = LinkLifecycleManager(db_session).create_link(
            po.id, so.id, link_type=LinkType.AUTOMATIC, initial_status=LinkStatus.PENDING_VERIFICATION
        )
        db_session.commit()

        response = client.post(f"/api/v1/order-links/{pending.id}/confirm", headers=OPERATOR)

        assert response.status_code == 200
        data = response.json()
        assert data["link_status"] == "active"
        assert data["linked_by"] == "alex@shop.test"

    def test_confirm_archived_link_rejected(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()
        link_id = create_link(client, po.id, so.id).json()["id"]
        client.delete(f"/api/v1/order-links/{link_id}")

        response = client.post(f"/api/v1/order-links/{link_id}/confirm")

        assert response.status_code == 422
        assert response.json()["details"]["rule"] == "link_status_transition"

    def test_delete_is_idempotent(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()
        link_id = create_link(client, po.id, so.id).json()["id"]

        first = client.delete(f"/api/v1/order-links/{link_id}")
        second = client.delete(f"/api/v1/order-links/{link_id}")

        assert first.status_code == 204
        assert second.status_code == 204
        status = client.get(f"/api/v1/order-links/storefront/{so.id}").json()
        assert status["is_linked"] is False
        assert status["links"][0]["link_status"] == "archived"

    def test_relink_after_delete(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        s1 = make_storefront_order()
        s2 = make_storefront_order()
        link_id = create_link(client, po.id, s1.id).json()["id"]
        client.delete(f"/api/v1/order-links/{link_id}")

        response = create_link(client, po.id, s2.id)

        assert response.status_code == 201


class TestLinkQueries:
    """Test listing, status and stats endpoints"""

    def test_storefront_link_status(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order(recipient_name="Jane Doe")
        so = make_storefront_order()
        link_id = create_link(client, po.id, so.id).json()["id"]

        response = client.get(f"/api/v1/order-links/storefront/{so.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["is_linked"] is True
        assert data["active_link_id"] == link_id
        assert data["links"][0]["provider_order"]["recipient_name"] == "Jane Doe"

    def test_storefront_without_links(self, client):
        data = client.get("/api/v1/order-links/storefront/424242").json()
        assert data["is_linked"] is False
        assert data["links"] == []

    def test_list_with_filters(self, client, make_provider_order, make_storefront_order):
        p1 = make_provider_order()
        p2 = make_provider_order()
        so = make_storefront_order()
        create_link(client, p1.id, so.id)
        create_link(client, p2.id, classification="corrective")

        everything = client.get("/api/v1/order-links").json()
        corrective = client.get("/api/v1/order-links", params={"classification": "corrective"}).json()

        assert everything["total"] == 2
        assert everything["limit"] == 50
        assert corrective["total"] == 1
        assert corrective["items"][0]["provider_order_id"] == p2.id
        assert corrective["items"][0]["storefront_order"] is None
        assert everything["stats"]["total_provider_orders"] == 2
        assert everything["stats"]["mapped_orders"] == 2
        assert everything["stats"]["corrective_orders"] == 1
        assert corrective["stats"] == everything["stats"]

    def test_list_rejects_unknown_mapped_status(self, client):
        response = client.get("/api/v1/order-links", params={"mapped_status": "sometimes"})
        assert response.status_code == 422

    def test_stats(self, client, make_provider_order, make_storefront_order):
        p1 = make_provider_order()
        make_provider_order()
        so = make_storefront_order()
        create_link(client, p1.id, so.id)

        data = client.get("/api/v1/order-links/stats").json()

        assert data["total_provider_orders"] == 2
        assert data["mapped_orders"] == 1
        assert data["unmapped_orders"] == 1
        assert data["mapping_percentage"] == 50.0

    def test_verify_marks_broken(self, client, db_session, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()
        create_link(client, po.id, so.id)
        db_session.delete(so)
        db_session.commit()

        data = client.post("/api/v1/order-links/verify").json()

        assert data["checked"] == 1
        assert data["broken_storefront_deleted"] == 1


class TestAutoMapEndpoint:
    """Test POST /api/v1/order-links/auto-map"""

    def test_auto_map_without_body(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()

        response = client.post("/api/v1/order-links/auto-map")

        assert response.status_code == 200
        data = response.json()
        assert data["successful_mappings"] == 1
        assert data["errors"] == []
        assert data["details"][0]["provider_order_id"] == po.id
        assert data["details"][0]["storefront_order_id"] == so.id

    def test_auto_map_bounded(self, client, make_provider_order):
        make_provider_order()
        make_provider_order()

        data = client.post("/api/v1/order-links/auto-map", json={"max_orders": 1}).json()

        assert data["processed"] == 1
        assert data["stopped_early"] is True

    def test_auto_map_rejects_non_positive_bounds(self, client):
        response = client.post("/api/v1/order-links/auto-map", json={"max_orders": 0})
        assert response.status_code == 422


class TestProviderOrderEndpoints:
    """Test /api/v1/provider-orders"""

    def test_unmapped_with_suggestions(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()

        data = client.get("/api/v1/provider-orders/unmapped").json()

        assert data["total"] == 1
        assert data["items"][0]["id"] == po.id
        assert data["items"][0]["suggestions"][0]["storefront_order_id"] == so.id

    def test_search(self, client, make_provider_order):
        po = make_provider_order(recipient_name="Grace Hopper", items=["Mug"])
        make_provider_order(recipient_name="Alan Turing")

        data = client.get("/api/v1/provider-orders/search", params={"q": "hopper"}).json()

        assert data["query"] == "hopper"
        assert [o["id"] for o in data["items"]] == [po.id]
        assert data["items"][0]["item_count"] == 1

    def test_candidates(self, client, make_provider_order, make_storefront_order):
        po = make_provider_order()
        so = make_storefront_order()

        data = client.get(f"/api/v1/provider-orders/{po.id}/candidates").json()

        assert data["provider_order_id"] == po.id
        assert data["candidates"][0]["storefront_order_id"] == so.id
        assert data["candidates"][0]["score"] > 0.99

    def test_candidates_unknown_order(self, client):
        response = client.get("/api/v1/provider-orders/999999/candidates")
        assert response.status_code == 404


class TestHealth:
    """Test observability endpoints"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
