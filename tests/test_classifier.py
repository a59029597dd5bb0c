"""Tests for classifier response parsing and the classifier client."""

import json

import pytest
from openai import OpenAIError

from conftest import FakeOpenAI, batch_payload
from subscription_scanner.classifier import (
    CircuitBreaker,
    ResponseShape,
    SubscriptionClassifier,
    coerce_amount,
    coerce_confidence,
    detect_shape,
    parse_classifier_response,
)
from subscription_scanner.exceptions import ClassificationUnavailable, UnexpectedResponseShape
from subscription_scanner.models import EmailBatchItem

NETFLIX = {
    "messageId": "m1",
    "type": "SUBSCRIPTION",
    "confidence": 92,
    "name": "Netflix",
    "amount": "15.99",
    "frequency": "MONTHLY",
}
AMAZON = {
    "messageId": "m2",
    "type": "EXPENSE",
    "confidence": 85,
    "merchant": "Amazon",
    "amount": 79.99,
    "date": "2025-10-01",
}


def test_bare_array_and_results_wrapper_match():
    """Both list layouts normalise to the same two results."""
    from_array = parse_classifier_response(json.dumps([NETFLIX, AMAZON]))
    from_wrapper = parse_classifier_response(json.dumps({"results": [NETFLIX, AMAZON]}))

    assert len(from_array) == 2
    assert from_array == from_wrapper
    assert from_array[0].kind == "SUBSCRIPTION"
    assert from_array[0].amount == 15.99
    assert from_array[1].merchant == "Amazon"


def test_single_object_wrapped():
    results = parse_classifier_response(json.dumps(NETFLIX))
    assert len(results) == 1
    assert results[0] == parse_classifier_response(json.dumps([NETFLIX]))[0]


def test_detect_shape():
    assert detect_shape([]) is ResponseShape.BARE_ARRAY
    assert detect_shape({"results": []}) is ResponseShape.RESULTS_WRAPPER
    assert detect_shape({"type": "EXPENSE"}) is ResponseShape.SINGLE_OBJECT


@pytest.mark.parametrize("payload", ['"just a string"', "42", '{"error": "rate limited"}', "null"])
def test_unexpected_shape(payload):
    with pytest.raises(UnexpectedResponseShape):
        parse_classifier_response(payload)


def test_not_json():
    with pytest.raises(UnexpectedResponseShape):
        parse_classifier_response("I could not find any subscriptions.")
    with pytest.raises(UnexpectedResponseShape):
        parse_classifier_response("")


def test_json_inside_markdown_fence():
    text = "```json\n" + json.dumps({"results": [NETFLIX]}) + "\n```"
    results = parse_classifier_response(text)
    assert results[0].name == "Netflix"


def test_non_object_elements_ignored():
    results = parse_classifier_response(json.dumps([NETFLIX, "junk", 3]))
    assert len(results) == 1


def test_confidence_defaults_to_zero():
    results = parse_classifier_response(json.dumps([{"messageId": "m1", "type": "EXPENSE"}]))
    assert results[0].confidence == 0.0


def test_legacy_single_email_fields():
    results = parse_classifier_response(json.dumps({
        "isSubscription": True,
        "serviceName": "Spotify",
        "billingFrequency": "monthly",
        "nextBillingDate": "2025-11-01",
        "confidence": "70",
    }))
    result = results[0]
    assert result.kind == "SUBSCRIPTION"
    assert result.name == "Spotify"
    assert result.frequency == "monthly"
    assert result.next_billing_at == "2025-11-01"
    assert result.confidence == 70.0


def test_coerce_amount():
    assert coerce_amount(15) == 15.0
    assert coerce_amount("15.99") == 15.99
    assert coerce_amount("$1,299.00") == 1299.0
    assert coerce_amount("free") is None
    assert coerce_amount("") is None
    assert coerce_amount(None) is None
    assert coerce_amount(True) is None


def test_coerce_confidence():
    assert coerce_confidence(None) == 0.0
    assert coerce_confidence("85") == 85.0
    assert coerce_confidence(150) == 100.0
    assert coerce_confidence(-5) == 0.0
    assert coerce_confidence("high") == 0.0


def test_classify_batch_sends_one_request():
    client = FakeOpenAI(lambda kwargs: json.dumps({"results": [NETFLIX, AMAZON]}))
    classifier = SubscriptionClassifier(client=client, model="test-model")
    items = [EmailBatchItem("m1", "netflix"), EmailBatchItem("m2", "amazon")]

    results = classifier.classify_batch(items)

    assert len(results) == 2
    assert len(client.calls) == 1
    call = client.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0]["role"] == "system"
    assert batch_payload(call) == [
        {"messageId": "m1", "content": "netflix"},
        {"messageId": "m2", "content": "amazon"},
    ]


def test_classify_empty_batch_makes_no_request():
    client = FakeOpenAI(lambda kwargs: "[]")
    assert SubscriptionClassifier(client=client).classify_batch([]) == []
    assert client.calls == []


def test_classify_batch_api_failure():
    client = FakeOpenAI(lambda kwargs: OpenAIError("service unavailable"))
    with pytest.raises(ClassificationUnavailable):
        SubscriptionClassifier(client=client).classify_batch([EmailBatchItem("m1", "x")])


def test_classify_batch_bad_shape_is_classification_unavailable():
    client = FakeOpenAI(lambda kwargs: '{"error": "nope"}')
    with pytest.raises(ClassificationUnavailable):
        SubscriptionClassifier(client=client).classify_batch([EmailBatchItem("m1", "x")])


def test_classify_one():
    client = FakeOpenAI(lambda kwargs: json.dumps({"type": "SUBSCRIPTION", "name": "Hulu", "confidence": 60}))
    result = SubscriptionClassifier(client=client).classify_one("Hulu receipt", message_id="abc")
    assert result.name == "Hulu"
    assert result.message_id == "abc"


def test_circuit_breaker_opens_and_resets(clock):
    breaker = CircuitBreaker(failure_threshold=2, reset_after=30, clock=clock)
    assert breaker.allow()

    breaker.record_failure()
    assert breaker.allow()
    breaker.record_failure()
    assert breaker.is_open
    assert not breaker.allow()

    clock.now += 30
    assert breaker.allow()
    breaker.record_failure()
    assert not breaker.allow()

    clock.now += 30
    breaker.record_success()
    assert not breaker.is_open
    assert breaker.failures == 0
