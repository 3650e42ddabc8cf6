"""HTTP tests for the payment and Evolution webhook routes."""

import pytest

from helpers import CUSTOMER_KEY, posted_types


class TestKirvanoWebhook:
    def test_pending_pix(self, client, app, kirvano_payload, session):
        response = client.post("/webhook/kirvano", json=kirvano_payload())

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "PIX pendente registrado"}
        assert app.state.relay.conversations.get(CUSTOMER_KEY).order_id == "X1"
        assert posted_types(session) == ["pending-pix"]

    def test_approved(self, client, approved_payload):
        response = client.post("/webhook/kirvano", json=approved_payload())
        assert response.json() == {"success": True, "message": "Venda aprovada processada"}

    def test_duplicate(self, client, kirvano_payload, session):
        client.post("/webhook/kirvano", json=kirvano_payload())
        response = client.post("/webhook/kirvano", json=kirvano_payload())

        assert response.status_code == 200
        assert response.json()["message"] == "Evento duplicado ignorado"
        assert posted_types(session) == ["pending-pix"]

    def test_missing_phone_answers_200_with_failure(self, client, kirvano_payload):
        response = client.post("/webhook/kirvano", json=kirvano_payload(phone=""))

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Telefone inválido"}

    def test_unrecognized_event(self, client, kirvano_payload):
        response = client.post(
            "/webhook/kirvano", json=kirvano_payload(event="SALE_REFUSED", status="REFUSED", method="CARD")
        )
        assert response.json() == {"success": True, "message": "Evento ignorado"}

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'"text"'])
    def test_unusable_body_is_ignored(self, client, body, session):
        response = client.post(
            "/webhook/kirvano", content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Evento ignorado"}
        session.post.assert_not_called()

    def test_unexpected_error_returns_500(self, client, app, kirvano_payload, monkeypatch):
        def boom(event):
            raise RuntimeError("state exploded")

        monkeypatch.setattr(app.state.relay, "handle_payment", boom)

        response = client.post("/webhook/kirvano", json=kirvano_payload())

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "state exploded"}

    def test_provider_retry_after_500_is_processed(self, client, app, kirvano_payload, monkeypatch):
        relay = app.state.relay
        assign = relay.identities.assign

        def broken(key):
            raise RuntimeError("liveness exploded")

        monkeypatch.setattr(relay.identities, "assign", broken)
        first = client.post("/webhook/kirvano", json=kirvano_payload())
        monkeypatch.setattr(relay.identities, "assign", assign)
        retry = client.post("/webhook/kirvano", json=kirvano_payload())

        assert first.status_code == 500
        assert retry.status_code == 200
        assert retry.json() == {"success": True, "message": "PIX pendente registrado"}


class TestPerfectPayWebhook:
    def test_pending_pix(self, client, app, session):
        response = client.post(
            "/webhook/perfectpay",
            json={
                "code": "PPX1",
                "sale_status_enum_key": "pending",
                "payment_type_enum_key": "pix",
                "sale_amount": 97,
                "pix_url": "https://qr.test/PPX1",
                "customer": {
                    "full_name": "Ana Costa",
                    "phone_area_code": "11",
                    "phone_number": "987654321",
                },
                "plan": {"code": "offer-cs"},
            },
        )

        assert response.json() == {"success": True, "message": "PIX pendente registrado"}
        record = app.state.relay.conversations.get(CUSTOMER_KEY)
        assert record.order_id == "PPX1"
        assert record.amount == "R$ 97,00"
        assert record.qr_reference == "https://qr.test/PPX1"

    def test_invalid_json(self, client):
        response = client.post(
            "/webhook/perfectpay", content=b"{", headers={"Content-Type": "application/json"}
        )
        assert response.json() == {"success": True, "message": "Evento ignorado"}


class TestEvolutionWebhook:
    def test_full_reply_flow(self, client, kirvano_payload, evolution_payload, session):
        client.post("/webhook/kirvano", json=kirvano_payload())

        system = client.post("/webhook/evolution", json=evolution_payload(from_me=True))
        reply = client.post("/webhook/evolution", json=evolution_payload(message_id="M2"))
        extra = client.post("/webhook/evolution", json=evolution_payload(message_id="M3"))

        assert system.json() == {"success": True, "message": "Aguardando resposta"}
        assert reply.json() == {"success": True, "message": "Resposta enviada"}
        assert extra.json() == {"success": True, "message": "Mensagem ignorada"}
        assert posted_types(session) == ["pending-pix", "first-reply"]

    def test_unknown_customer(self, client, evolution_payload):
        response = client.post("/webhook/evolution", json=evolution_payload())
        assert response.json() == {"success": True, "message": "Cliente não encontrado"}

    @pytest.mark.parametrize(
        "body",
        [
            {"event": "connection.update"},
            {"data": {"message": {"conversation": "oi"}}},
            {"data": {"key": {"fromMe": False}}},
            [],
        ],
    )
    def test_missing_envelope(self, client, body):
        response = client.post("/webhook/evolution", json=body)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Dados inválidos"}

    def test_invalid_json(self, client):
        response = client.post(
            "/webhook/evolution", content=b"nope", headers={"Content-Type": "application/json"}
        )
        assert response.json() == {"success": True, "message": "Dados inválidos"}

    def test_unexpected_error_returns_500(self, client, app, evolution_payload, monkeypatch):
        def boom(message):
            raise RuntimeError("boom")

        monkeypatch.setattr(app.state.relay, "handle_message", boom)

        response = client.post("/webhook/evolution", json=evolution_payload())

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "boom"}
