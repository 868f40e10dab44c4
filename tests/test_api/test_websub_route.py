"""Tests for the WebSub callback endpoints."""

from src.errors import ParseError

TOPIC = "https://www.youtube.com/xml/feeds/videos.xml?channel_id=UC1234567890abcdefghijkl"


class TestVerification:
    def test_challenge_echoed(self, client, pipeline):
        pipeline.websub.verify_challenge.return_value = "challenge-42"

        response = client.get(
            "/websub/callback",
            params={
                "hub.mode": "subscribe",
                "hub.topic": TOPIC,
                "hub.challenge": "challenge-42",
                "hub.lease_seconds": "432000",
            },
        )

        assert response.status_code == 200
        assert response.text == "challenge-42"
        pipeline.websub.verify_challenge.assert_awaited_once_with(
            "subscribe", TOPIC, "challenge-42", 432000
        )

    def test_unknown_topic_is_404(self, client, pipeline):
        response = client.get(
            "/websub/callback",
            params={"hub.mode": "subscribe", "hub.topic": TOPIC, "hub.challenge": "x"},
        )

        assert response.status_code == 404

    def test_missing_params_passed_as_none(self, client, pipeline):
        client.get("/websub/callback")

        pipeline.websub.verify_challenge.assert_awaited_once_with(None, None, None, None)


class TestNotification:
    def test_accepted(self, client, pipeline):
        body = b"<feed xmlns='http://www.w3.org/2005/Atom'></feed>"

        response = client.post(
            "/websub/callback",
            content=body,
            headers={"X-Hub-Signature": "sha1=abc", "Content-Type": "application/atom+xml"},
        )

        assert response.status_code == 204
        pipeline.websub.handle_notification.assert_awaited_once_with(body, "sha1=abc")

    def test_unparseable_body_is_400(self, client, pipeline):
        pipeline.websub.handle_notification.side_effect = ParseError("not an Atom document")

        response = client.post("/websub/callback", content=b"hello")

        assert response.status_code == 400
        assert "Atom" in response.json()["detail"]
