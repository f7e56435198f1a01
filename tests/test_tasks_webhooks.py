import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.services.webhook import webhooks
from app.tasks.webhooks import (
    _find_and_queue,
    deliver_single_webhook,
    deliver_webhooks,
    webhook_in_scope,
)


def _outgoing(reference, triggers=("element.created",), **response):
    response.setdefault("url", "https://example.com/hook")
    return {
        "type": "Outgoing",
        "triggers": list(triggers),
        "reference": reference,
        "responses": [response],
    }


@pytest.fixture()
def project_hook(db_session, admin, project):
    hook = webhooks.create(db_session, admin, _outgoing("council:prtlgn"))[0]
    db_session.commit()
    return hook


class TestFindAndQueue:
    @patch("app.tasks.webhooks.deliver_single_webhook.delay")
    def test_queues_matching_webhook(
        self, mock_deliver, db_session, project_hook
    ) -> None:
        queued = _find_and_queue(
            db_session,
            "element.created",
            "element",
            ["council:prtlgn:master:e1"],
            "admin",
            {},
        )
        assert queued == 1
        kwargs = mock_deliver.call_args.kwargs
        assert kwargs["webhook_id"] == project_hook.id
        assert kwargs["url"] == "https://example.com/hook"
        assert kwargs["method"] == "POST"
        assert kwargs["payload"]["ids"] == ["council:prtlgn:master:e1"]
        assert kwargs["payload"]["event"] == "element.created"

    @patch("app.tasks.webhooks.deliver_single_webhook.delay")
    def test_skips_other_triggers(self, mock_deliver, db_session, project_hook) -> None:
        _find_and_queue(
            db_session,
            "element.deleted",
            "element",
            ["council:prtlgn:master:e1"],
            None,
            {},
        )
        mock_deliver.assert_not_called()

    @patch("app.tasks.webhooks.deliver_single_webhook.delay")
    def test_skips_entities_outside_scope(
        self, mock_deliver, db_session, project_hook
    ) -> None:
        _find_and_queue(
            db_session,
            "element.created",
            "element",
            ["council:other:master:e1"],
            None,
            {},
        )
        mock_deliver.assert_not_called()

    @patch("app.tasks.webhooks.deliver_single_webhook.delay")
    def test_skips_archived_webhook(
        self, mock_deliver, db_session, admin, project_hook
    ) -> None:
        webhooks.remove(db_session, admin, project_hook.id, {"soft": True})
        db_session.commit()
        _find_and_queue(
            db_session,
            "element.created",
            "element",
            ["council:prtlgn:master:e1"],
            None,
            {},
        )
        mock_deliver.assert_not_called()

    @patch("app.tasks.webhooks.deliver_single_webhook.delay")
    def test_static_response_data(self, mock_deliver, db_session, admin) -> None:
        webhooks.create(
            db_session,
            admin,
            _outgoing(None, method="put", data={"static": True}),
        )
        _find_and_queue(db_session, "element.created", "element", ["a:b:c:d"], None, {})
        kwargs = mock_deliver.call_args.kwargs
        assert kwargs["method"] == "PUT"
        assert kwargs["payload"] == {"static": True}

    def test_deliver_webhooks_swallows_store_errors(self) -> None:
        session = MagicMock()
        with patch("app.db.SessionLocal", return_value=session), patch(
            "app.tasks.webhooks._find_and_queue", side_effect=RuntimeError("down")
        ):
            deliver_webhooks(
                event_type="element.created",
                entity_type="element",
                entity_ids=["a:b:c:d"],
            )
        session.close.assert_called_once()


class TestWebhookInScope:
    def test_server_level_sees_everything(self) -> None:
        assert webhook_in_scope(None, "council:prtlgn:master:e1")

    def test_ancestor_scopes(self) -> None:
        assert webhook_in_scope("council", "council:prtlgn:master:e1")
        assert webhook_in_scope("council:prtlgn", "council:prtlgn")
        assert webhook_in_scope("council:prtlgn:master", "council:prtlgn:master:e1")

    def test_other_scopes(self) -> None:
        assert not webhook_in_scope("council:prtlgn:dev", "council:prtlgn:master:e1")
        assert not webhook_in_scope("counc", "council:prtlgn")


class TestDeliverSingleWebhook:
    @patch("httpx.Client")
    def test_success(self, mock_client_cls) -> None:
        client = mock_client_cls.return_value.__enter__.return_value
        client.request.return_value.status_code = 200

        deliver_single_webhook(
            webhook_id="w1",
            url="https://example.com/hook",
            method="POST",
            headers={"X-Extra": "1"},
            payload={"event": "element.created"},
        )

        args, kwargs = client.request.call_args
        assert args == ("POST", "https://example.com/hook")
        assert json.loads(kwargs["content"]) == {"event": "element.created"}
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["headers"]["X-Extra"] == "1"

    @patch("httpx.Client")
    def test_http_error_status_retries(self, mock_client_cls) -> None:
        client = mock_client_cls.return_value.__enter__.return_value
        client.request.return_value.status_code = 502

        with patch.object(deliver_single_webhook, "retry") as mock_retry:
            deliver_single_webhook(
                webhook_id="w1",
                url="https://example.com/hook",
                method="POST",
                headers={},
                payload={},
            )
        mock_retry.assert_called_once()

    @patch("httpx.Client")
    def test_connection_error_retries(self, mock_client_cls) -> None:
        client = mock_client_cls.return_value.__enter__.return_value
        client.request.side_effect = httpx.ConnectError("refused")

        with patch.object(deliver_single_webhook, "retry") as mock_retry:
            deliver_single_webhook(
                webhook_id="w1",
                url="https://example.com/hook",
                method="POST",
                headers={},
                payload={},
            )
        mock_retry.assert_called_once()
