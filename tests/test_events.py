"""Tests for event classification and conversion between encodings."""

import json
import logging
from datetime import datetime, timezone

import pytest

from funcframework.events import (
    CLOUDEVENT_JSON_CONTENT_TYPE,
    TYPE_CLOUD_EVENT_TO_BACKGROUND,
    background_event_to_cloud_event,
    cloud_event_to_background_event,
    convert_background_to_cloud_event_request,
    convert_cloud_event_to_background_request,
    get_background_event,
    is_binary_cloud_event,
    is_structured_cloud_event,
    looks_like_cloud_event,
    split_resource,
)
from funcframework.exceptions import EventConversionError
from funcframework.interfaces import Metadata, Resource
from funcframework.pubsub import PUBSUB_MESSAGE_TYPE


@pytest.fixture
def storage_event():
    """A Cloud Storage finalize background event."""
    return {
        "context": {
            "eventId": "aaaaaa-1111-bbbb-2222-cccccccccccc",
            "timestamp": "2020-09-29T11:32:00.000Z",
            "eventType": "google.storage.object.finalize",
            "resource": {
                "service": "storage.googleapis.com",
                "name": "projects/_/buckets/some-bucket/objects/folder/Test.cs",
                "type": "storage#object",
            },
        },
        "data": {
            "bucket": "some-bucket",
            "kind": "storage#object",
            "name": "folder/Test.cs",
        },
    }


@pytest.fixture
def binary_storage_headers():
    """Headers of the storage event as a binary CloudEvent."""
    return {
        "ce-specversion": "1.0",
        "ce-type": "google.cloud.storage.object.v1.finalized",
        "ce-source": "//storage.googleapis.com/projects/_/buckets/some-bucket",
        "ce-subject": "objects/folder/Test.cs",
        "ce-id": "aaaaaa-1111-bbbb-2222-cccccccccccc",
        "ce-time": "2020-09-29T11:32:00.000Z",
        "Content-Type": "application/json",
    }


def _metadata(context):
    return Metadata.model_validate(context)


class TestGetBackgroundEvent:
    """Test background event classification."""

    def test_wrapped_envelope(self, storage_event):
        """A context-wrapped envelope yields its metadata and data."""
        metadata, data = get_background_event(json.dumps(storage_event).encode())

        assert metadata.event_id == "aaaaaa-1111-bbbb-2222-cccccccccccc"
        assert metadata.event_type == "google.storage.object.finalize"
        assert metadata.resource.name == "projects/_/buckets/some-bucket/objects/folder/Test.cs"
        assert data == storage_event["data"]

    def test_flat_envelope(self):
        """Context fields may sit at the top level next to data."""
        body = {
            "eventId": "1",
            "eventType": "providers/cloud.pubsub/eventTypes/topic.publish",
            "resource": "projects/sample-project/topics/gcf-test",
            "data": {"attr1": "attr1-value"},
        }

        metadata, data = get_background_event(json.dumps(body).encode())

        assert metadata.event_id == "1"
        assert metadata.timestamp is None
        assert metadata.resource.raw_path == "projects/sample-project/topics/gcf-test"
        assert data == {"attr1": "attr1-value"}

    def test_unrelated_json_is_not_an_event(self):
        """A body without data is not a background event, and not an error."""
        assert get_background_event(b'{"random": "x"}') == (None, None)

    def test_data_without_event_id_is_not_an_event(self):
        """A flat body needs an event ID to count as an envelope."""
        assert get_background_event(b'{"data": {"a": 1}, "timestamp": "nope"}') == (None, None)

    def test_context_without_data_is_not_an_event(self):
        """A context wrapper with no data is not an event."""
        body = {"context": {"eventId": "1", "eventType": "t"}}
        assert get_background_event(json.dumps(body).encode()) == (None, None)

    def test_non_object_json_is_not_an_event(self):
        """Arrays and scalars are never envelopes."""
        assert get_background_event(b"[1, 2, 3]") == (None, None)
        assert get_background_event(b'"text"') == (None, None)

    def test_malformed_json_is_an_error(self):
        """Malformed JSON is a hard error."""
        with pytest.raises(ValueError):
            get_background_event(b'{"data": ')

    def test_legacy_pubsub_push(self):
        """Push payloads become publish events on the topic from the path."""
        body = {
            "subscription": "projects/FOO/subscriptions/BAR_SUB",
            "message": {
                "data": "eyJmb28iOiJiYXIifQ==",
                "messageId": "1",
                "attributes": {"test": "123"},
            },
        }

        metadata, data = get_background_event(
            json.dumps(body).encode(), "/projects/FOO/topics/BAR_TOPIC?pubsub_trigger=true"
        )

        assert metadata.event_id == "1"
        assert metadata.event_type == "google.pubsub.topic.publish"
        assert metadata.resource.name == "projects/FOO/topics/BAR_TOPIC"
        assert metadata.resource.type == PUBSUB_MESSAGE_TYPE
        assert data["data"] == b'{"foo":"bar"}'
        assert data["attributes"] == {"test": "123"}

    def test_legacy_pubsub_without_topic_in_path(self, caplog):
        """A path without a topic is only a warning."""
        body = {"subscription": "s", "message": {"data": "", "messageId": "1"}}

        with caplog.at_level(logging.WARNING, logger="funcframework.events"):
            metadata, _ = get_background_event(json.dumps(body).encode(), "/")

        assert metadata.resource.name == ""
        assert "failed to extract Pub/Sub topic name" in caplog.text


class TestSplitResource:
    """Test splitting resources into resource and subject."""

    def test_storage(self):
        """Storage objects split at the bucket."""
        assert split_resource(
            "storage.googleapis.com", "projects/_/buckets/b/objects/a/b.txt"
        ) == ("projects/_/buckets/b", "objects/a/b.txt")

    def test_firestore(self):
        """Firestore documents split at the database."""
        assert split_resource(
            "firestore.googleapis.com",
            "projects/project-id/databases/(default)/documents/gcf-test/2Vm2mI1d0wIaK2Waj5to",
        ) == (
            "projects/project-id/databases/(default)",
            "documents/gcf-test/2Vm2mI1d0wIaK2Waj5to",
        )

    def test_service_without_pattern(self):
        """Services without a pattern keep the whole resource."""
        assert split_resource("pubsub.googleapis.com", "projects/p/topics/t") == (
            "projects/p/topics/t",
            "",
        )

    def test_mismatch_is_an_error(self):
        """A resource that does not fit its service's pattern is an error."""
        with pytest.raises(EventConversionError, match="resource regexp did not match"):
            split_resource("storage.googleapis.com", "projects/_/buckets/b")


class TestBackgroundToCloudEvent:
    """Test background event to CloudEvent conversion."""

    def test_storage(self, storage_event):
        """Storage events split the object name into the subject."""
        event = background_event_to_cloud_event(
            _metadata(storage_event["context"]), storage_event["data"]
        )

        assert event == {
            "id": "aaaaaa-1111-bbbb-2222-cccccccccccc",
            "specversion": "1.0",
            "datacontenttype": "application/json",
            "type": "google.cloud.storage.object.v1.finalized",
            "source": "//storage.googleapis.com/projects/_/buckets/some-bucket",
            "subject": "objects/folder/Test.cs",
            "time": "2020-09-29T11:32:00Z",
            "data": storage_event["data"],
        }

    def test_pubsub_wraps_message(self):
        """Pub/Sub data is wrapped and gains messageId and publishTime."""
        metadata = _metadata(
            {
                "eventId": "1215011316659232",
                "timestamp": "2020-09-29T11:32:00.209Z",
                "eventType": "google.pubsub.topic.publish",
                "resource": {
                    "service": "pubsub.googleapis.com",
                    "name": "projects/sample-project/topics/gcf-test",
                    "type": PUBSUB_MESSAGE_TYPE,
                },
            }
        )

        event = background_event_to_cloud_event(
            metadata, {"@type": PUBSUB_MESSAGE_TYPE, "data": "AQIDBA=="}
        )

        assert event["type"] == "google.cloud.pubsub.topic.v1.messagePublished"
        assert event["source"] == "//pubsub.googleapis.com/projects/sample-project/topics/gcf-test"
        assert "subject" not in event
        assert event["data"] == {
            "message": {
                "@type": PUBSUB_MESSAGE_TYPE,
                "data": "AQIDBA==",
                "messageId": "1215011316659232",
                "publishTime": "2020-09-29T11:32:00.209Z",
            }
        }

    def test_legacy_type_infers_service(self):
        """Without a resource service, it is inferred from the event type."""
        metadata = _metadata(
            {
                "eventId": "1",
                "eventType": "providers/cloud.pubsub/eventTypes/topic.publish",
                "resource": "projects/sample-project/topics/gcf-test",
            }
        )

        event = background_event_to_cloud_event(metadata, {"attr": "x"})

        assert event["source"] == "//pubsub.googleapis.com/projects/sample-project/topics/gcf-test"
        assert "time" not in event

    def test_firebase_auth(self):
        """Auth metadata fields are renamed and the subject names the user."""
        data = {
            "email": "test@nowhere.com",
            "metadata": {
                "createdAt": "2020-05-26T10:42:27.088Z",
                "lastSignedInAt": "2020-10-24T11:00:00.000Z",
            },
            "uid": "UUpby3s4spZre6kHsgVSPetzQ8l2",
        }
        metadata = _metadata(
            {
                "eventId": "4423b4fa-c39b-4f79-b338-977a018e9b55",
                "eventType": "providers/firebase.auth/eventTypes/user.create",
                "resource": "projects/my-project-id",
            }
        )

        event = background_event_to_cloud_event(metadata, data)

        assert event["type"] == "google.firebase.auth.user.v1.created"
        assert event["source"] == "//firebaseauth.googleapis.com/projects/my-project-id"
        assert event["subject"] == "users/UUpby3s4spZre6kHsgVSPetzQ8l2"
        assert event["data"]["metadata"] == {
            "createTime": "2020-05-26T10:42:27.088Z",
            "lastSignInTime": "2020-10-24T11:00:00.000Z",
        }
        # the caller's data is left alone
        assert "createdAt" in data["metadata"]

    @pytest.mark.parametrize(
        "domain,location",
        [
            ("firebaseio.com", "us-central1"),
            ("europe-west1.firebasedatabase.app", "europe-west1"),
        ],
    )
    def test_firebase_database_location(self, domain, location):
        """The database location comes from the event's domain."""
        metadata = _metadata(
            {
                "eventId": "1",
                "eventType": "providers/google.firebase.database/eventTypes/ref.write",
                "resource": "projects/_/instances/my-project-id/refs/gcf-test/xyz",
            }
        )

        event = background_event_to_cloud_event(metadata, {"delta": 1}, domain=domain)

        assert event["type"] == "google.firebase.database.ref.v1.written"
        assert event["source"] == (
            f"//firebasedatabase.googleapis.com/projects/_/locations/{location}"
            "/instances/my-project-id"
        )
        assert event["subject"] == "refs/gcf-test/xyz"

    def test_firebase_database_without_domain(self):
        """The location cannot be derived without a domain."""
        metadata = _metadata(
            {
                "eventId": "1",
                "eventType": "providers/google.firebase.database/eventTypes/ref.write",
                "resource": "projects/_/instances/my-project-id/refs/gcf-test/xyz",
            }
        )

        with pytest.raises(EventConversionError, match="domain"):
            background_event_to_cloud_event(metadata, {"delta": 1})

    def test_unknown_type(self):
        """Event types without a CloudEvent equivalent are unsupported."""
        metadata = _metadata({"eventId": "1", "eventType": "some.unknown.type"})

        with pytest.raises(EventConversionError) as exc_info:
            background_event_to_cloud_event(metadata, {"a": 1})

        assert exc_info.value.status_code == 415

    def test_request_rewrite(self, storage_event):
        """The rewritten request is a structured CloudEvent."""
        body, headers = convert_background_to_cloud_event_request(
            json.dumps(storage_event).encode(),
            {"Content-Type": "application/json", "Content-Length": "1", "X-Other": "kept"},
        )

        assert headers["Content-Type"] == CLOUDEVENT_JSON_CONTENT_TYPE
        assert headers["Content-Length"] == str(len(body))
        assert headers["X-Other"] == "kept"
        assert json.loads(body)["type"] == "google.cloud.storage.object.v1.finalized"

    def test_request_rewrite_of_non_event(self):
        """A body that is not a background event cannot be rewritten."""
        with pytest.raises(EventConversionError, match="unable to extract background event"):
            convert_background_to_cloud_event_request(b'{"random": "x"}', {})

    def test_request_rewrite_of_malformed_json(self):
        """Malformed JSON is reported as a conversion error."""
        with pytest.raises(EventConversionError, match="parsing background event body"):
            convert_background_to_cloud_event_request(b"{", {})

    def test_raw_bytes_are_base64_encoded(self):
        """Pub/Sub push data decoded to bytes is written back as base64."""
        body = {"message": {"data": "aGVsbG8=", "messageId": "7"}}

        encoded, _ = convert_background_to_cloud_event_request(
            json.dumps(body).encode(), {}, "/projects/p/topics/t"
        )

        message = json.loads(encoded)["data"]["message"]
        assert message["data"] == "aGVsbG8="
        assert message["messageId"] == "7"


class TestCloudEventToBackground:
    """Test CloudEvent to background event conversion."""

    def test_pubsub_round_trip(self):
        """Event ID, type and resource name survive a round trip."""
        metadata = Metadata(
            event_id="123",
            event_type="google.pubsub.topic.publish",
            resource=Resource(name="projects/P/topics/T", service="pubsub.googleapis.com"),
        )

        event = background_event_to_cloud_event(metadata, {"data": "aGVsbG8="})
        background = cloud_event_to_background_event(event, event["data"])

        assert background["context"]["eventId"] == "123"
        assert background["context"]["eventType"] == "google.pubsub.topic.publish"
        assert background["context"]["resource"]["name"] == "projects/P/topics/T"
        assert background["data"]["data"] == "aGVsbG8="

    def test_storage(self):
        """Storage resources are rebuilt from source, subject and data kind."""
        background = cloud_event_to_background_event(
            {
                "id": "1",
                "type": "google.cloud.storage.object.v1.finalized",
                "source": "//storage.googleapis.com/projects/_/buckets/some-bucket",
                "subject": "objects/folder/Test.cs",
                "time": "2020-09-29T11:32:00.000Z",
            },
            {"kind": "storage#object"},
        )

        assert background["context"] == {
            "eventId": "1",
            "eventType": "google.storage.object.finalize",
            "timestamp": "2020-09-29T11:32:00Z",
            "resource": {
                "service": "storage.googleapis.com",
                "name": "projects/_/buckets/some-bucket/objects/folder/Test.cs",
                "type": "storage#object",
            },
        }

    def test_time_is_normalized(self):
        """The CloudEvent time becomes an RFC 3339 timestamp in UTC form."""
        background = cloud_event_to_background_event(
            {
                "id": "1",
                "type": "google.firebase.auth.user.v1.created",
                "source": "//firebaseauth.googleapis.com/projects/my-project-id",
                "time": "2020-09-29T11:32:00.209+00:00",
            },
            {},
        )

        assert background["context"]["timestamp"] == "2020-09-29T11:32:00.209Z"

    def test_bad_time(self):
        """A time that is not a timestamp cannot be converted."""
        with pytest.raises(EventConversionError, match="time") as exc_info:
            cloud_event_to_background_event(
                {
                    "id": "1",
                    "type": "google.firebase.auth.user.v1.created",
                    "source": "//firebaseauth.googleapis.com/projects/my-project-id",
                    "time": "yesterday",
                },
                {},
            )

        assert exc_info.value.status_code == 400

    def test_firebase_auth_fields_renamed_back(self):
        """Auth metadata fields get their background names back."""
        background = cloud_event_to_background_event(
            {
                "id": "1",
                "type": "google.firebase.auth.user.v1.created",
                "source": "//firebaseauth.googleapis.com/projects/my-project-id",
                "subject": "users/abc",
            },
            {"uid": "abc", "metadata": {"createTime": "t1", "lastSignInTime": "t2"}},
        )

        assert background["context"]["resource"] == "projects/my-project-id"
        assert background["data"]["metadata"] == {"createdAt": "t1", "lastSignedInAt": "t2"}

    def test_firebase_database_location_removed(self):
        """The location segment is not part of the background resource."""
        background = cloud_event_to_background_event(
            {
                "id": "1",
                "type": "google.firebase.database.ref.v1.created",
                "source": "//firebasedatabase.googleapis.com/projects/_/locations/us-central1/instances/my-project-id",
                "subject": "refs/gcf-test/xyz",
            },
            {"delta": 1},
        )

        assert background["context"]["eventType"] == (
            "providers/google.firebase.database/eventTypes/ref.create"
        )
        assert background["context"]["resource"] == (
            "projects/_/instances/my-project-id/refs/gcf-test/xyz"
        )

    def test_first_background_type_is_preferred(self):
        """Shared CloudEvent types map back to the first background type listed."""
        assert TYPE_CLOUD_EVENT_TO_BACKGROUND[
            "google.cloud.storage.object.v1.finalized"
        ] == "google.storage.object.finalize"

    def test_unknown_type_is_not_converted(self):
        """CloudEvents without a background equivalent are left alone."""
        assert cloud_event_to_background_event(
            {"id": "1", "type": "com.example.custom", "source": "//x/y"}, {}
        ) is None

    def test_bad_source(self):
        """The source must be of the form //service/resource."""
        with pytest.raises(EventConversionError, match="source"):
            cloud_event_to_background_event(
                {"id": "1", "type": "google.cloud.storage.object.v1.finalized", "source": "bucket"},
                {},
            )

    def test_binary_request(self, binary_storage_headers):
        """A binary CloudEvent request is rewritten as a background envelope."""
        body = convert_cloud_event_to_background_request(
            json.dumps({"bucket": "some-bucket", "kind": "storage#object"}).encode(),
            binary_storage_headers,
        )

        envelope = json.loads(body)
        assert envelope["context"]["eventId"] == "aaaaaa-1111-bbbb-2222-cccccccccccc"
        assert envelope["context"]["resource"]["type"] == "storage#object"
        assert envelope["data"]["bucket"] == "some-bucket"

    def test_structured_request(self):
        """A structured CloudEvent request is rewritten too."""
        event = {
            "specversion": "1.0",
            "type": "google.cloud.pubsub.topic.v1.messagePublished",
            "source": "//pubsub.googleapis.com/projects/p/topics/t",
            "id": "42",
            "datacontenttype": "application/json",
            "data": {"message": {"data": "aGVsbG8="}},
        }

        body = convert_cloud_event_to_background_request(
            json.dumps(event).encode(),
            {"Content-Type": CLOUDEVENT_JSON_CONTENT_TYPE},
        )

        envelope = json.loads(body)
        assert envelope["context"]["eventType"] == "google.pubsub.topic.publish"
        assert envelope["context"]["resource"]["name"] == "projects/p/topics/t"
        assert envelope["data"] == {"data": "aGVsbG8="}

    def test_plain_json_request_is_not_converted(self):
        """A request that is not a CloudEvent falls through."""
        assert convert_cloud_event_to_background_request(
            b'{"data": {"a": 1}}', {"Content-Type": "application/json"}
        ) is None


class TestMetadataWireForm:
    """Test the envelope form of background event metadata."""

    def test_string_resource(self):
        """A bare resource path stays a string."""
        metadata = Metadata(
            event_id="1",
            event_type="providers/cloud.firestore/eventTypes/document.write",
            resource=Resource.model_validate("projects/p/databases/(default)/documents/a/b"),
        )

        assert metadata.to_wire() == {
            "eventId": "1",
            "eventType": "providers/cloud.firestore/eventTypes/document.write",
            "resource": "projects/p/databases/(default)/documents/a/b",
        }

    def test_struct_resource_drops_empty_fields(self):
        """Structured resources only carry the fields that are set."""
        metadata = Metadata(
            event_id="1",
            event_type="google.storage.object.finalize",
            timestamp=datetime(2020, 9, 29, 11, 32, tzinfo=timezone.utc),
            resource=Resource(service="storage.googleapis.com", name="projects/_/buckets/b"),
        )

        assert metadata.to_wire() == {
            "eventId": "1",
            "eventType": "google.storage.object.finalize",
            "timestamp": "2020-09-29T11:32:00Z",
            "resource": {"service": "storage.googleapis.com", "name": "projects/_/buckets/b"},
        }

    def test_no_timestamp_or_resource(self):
        """Unset optional fields are left out."""
        assert Metadata(event_id="1", event_type="t").to_wire() == {
            "eventId": "1",
            "eventType": "t",
        }

    def test_parsed_envelope_round_trips(self):
        """An envelope context read by the parser is written back unchanged."""
        context = {
            "eventId": "1",
            "eventType": "google.pubsub.topic.publish",
            "timestamp": "2020-09-29T11:32:00.209Z",
            "resource": {
                "service": "pubsub.googleapis.com",
                "name": "projects/P/topics/T",
                "type": PUBSUB_MESSAGE_TYPE,
            },
        }

        assert Metadata.model_validate(context).to_wire() == context


class TestCloudEventDetection:
    """Test recognition of CloudEvent requests."""

    def test_binary_headers(self):
        """Any ce-* attribute header marks a binary CloudEvent."""
        assert is_binary_cloud_event({"Ce-Type": "t"})
        assert is_binary_cloud_event({"ce-id": "1"})
        assert not is_binary_cloud_event({"Content-Type": "application/json"})

    def test_structured_by_content_type(self):
        """The structured content type marks a structured CloudEvent."""
        assert is_structured_cloud_event(
            {"Content-Type": "application/cloudevents+json; charset=utf-8"}, b""
        )

    def test_structured_by_body(self):
        """A JSON body with the required attributes is structured too."""
        body = json.dumps(
            {"specversion": "1.0", "type": "t", "source": "s", "id": "1"}
        ).encode()
        assert is_structured_cloud_event({}, body)
        assert not is_structured_cloud_event({}, b'{"type": "t"}')
        assert not is_structured_cloud_event({}, b"not json")

    def test_looks_like_cloud_event(self):
        """The pre-conversion check uses ce-id and the content type."""
        assert looks_like_cloud_event({"Ce-Id": "1"})
        assert looks_like_cloud_event({"Content-Type": "application/cloudevents+json"})
        assert not looks_like_cloud_event({"Content-Type": "application/json"})
