from core.logging_config import add_service, redact_secrets


def test_credentials_are_masked():
    event = redact_secrets(None, "info", {"event": "x", "stripe_signature": "t=1,v1=abc", "amount_cents": 100})
    assert event["stripe_signature"] == "***"
    assert event["amount_cents"] == 100


def test_service_fields_are_added_without_overriding():
    event = add_service(None, "info", {"event": "x", "environment": "test"})
    assert event["service"]
    assert event["environment"] == "test"
