"""Event normalization between legacy background events and CloudEvents.

Inbound requests arrive in one of several envelopes: a background event
(``{"context": {...}, "data": ...}`` or the same fields without the wrapper),
a legacy Pub/Sub push payload, or a CloudEvent in binary or structured HTTP
encoding. The helpers here classify a request body and rewrite it into the
envelope a given function kind expects.

The conversion tables are lossy: several background event types map onto the
same CloudEvent type, and the reverse mapping picks the first one listed.
"""

import base64
import copy
import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import cloudevents.exceptions as cloud_exceptions
from cloudevents.http import from_http

from funcframework.exceptions import EventConversionError
from funcframework.interfaces import BackgroundEvent, Metadata, Resource, format_rfc3339
from funcframework.pubsub import (
    PUBSUB_MESSAGE_TYPE,
    LegacyPubSubEvent,
    extract_topic_from_request_path,
)

logger = logging.getLogger(__name__)

CE_ID_HEADER = "ce-id"
CE_REQUIRED_HEADERS = ("ce-type", "ce-specversion", "ce-source", "ce-id")
CONTENT_TYPE_HEADER = "Content-Type"
CONTENT_LENGTH_HEADER = "Content-Length"

CE_SPEC_VERSION = "1.0"
CLOUDEVENT_JSON_CONTENT_TYPE = "application/cloudevents+json"

FIREBASE_AUTH_CE_SERVICE = "firebaseauth.googleapis.com"
FIREBASE_CE_SERVICE = "firebase.googleapis.com"
FIREBASE_DB_CE_SERVICE = "firebasedatabase.googleapis.com"
FIRESTORE_CE_SERVICE = "firestore.googleapis.com"
PUBSUB_CE_SERVICE = "pubsub.googleapis.com"
STORAGE_CE_SERVICE = "storage.googleapis.com"

# Background event type -> CloudEvent type. Where several background types
# share a CloudEvent type, the first one listed is the preferred inverse.
TYPE_BACKGROUND_TO_CLOUD_EVENT: Dict[str, str] = {
    "google.pubsub.topic.publish": "google.cloud.pubsub.topic.v1.messagePublished",
    "providers/cloud.pubsub/eventTypes/topic.publish": "google.cloud.pubsub.topic.v1.messagePublished",
    "google.storage.object.finalize": "google.cloud.storage.object.v1.finalized",
    "google.storage.object.delete": "google.cloud.storage.object.v1.deleted",
    "google.storage.object.archive": "google.cloud.storage.object.v1.archived",
    "google.storage.object.metadataUpdate": "google.cloud.storage.object.v1.metadataUpdated",
    "providers/cloud.storage/eventTypes/object.change": "google.cloud.storage.object.v1.finalized",
    "providers/cloud.firestore/eventTypes/document.write": "google.cloud.firestore.document.v1.written",
    "providers/cloud.firestore/eventTypes/document.create": "google.cloud.firestore.document.v1.created",
    "providers/cloud.firestore/eventTypes/document.update": "google.cloud.firestore.document.v1.updated",
    "providers/cloud.firestore/eventTypes/document.delete": "google.cloud.firestore.document.v1.deleted",
    "providers/firebase.auth/eventTypes/user.create": "google.firebase.auth.user.v1.created",
    "providers/firebase.auth/eventTypes/user.delete": "google.firebase.auth.user.v1.deleted",
    "providers/google.firebase.analytics/eventTypes/event.log": "google.firebase.analytics.log.v1.written",
    "providers/google.firebase.database/eventTypes/ref.create": "google.firebase.database.ref.v1.created",
    "providers/google.firebase.database/eventTypes/ref.write": "google.firebase.database.ref.v1.written",
    "providers/google.firebase.database/eventTypes/ref.update": "google.firebase.database.ref.v1.updated",
    "providers/google.firebase.database/eventTypes/ref.delete": "google.firebase.database.ref.v1.deleted",
}

TYPE_CLOUD_EVENT_TO_BACKGROUND: Dict[str, str] = {}
for _background_type, _ce_type in TYPE_BACKGROUND_TO_CLOUD_EVENT.items():
    TYPE_CLOUD_EVENT_TO_BACKGROUND.setdefault(_ce_type, _background_type)

# Background event type prefix -> CloudEvent service, first match wins
SERVICE_BACKGROUND_TO_CLOUD_EVENT: List[Tuple[str, str]] = [
    ("providers/cloud.firestore/", FIRESTORE_CE_SERVICE),
    ("providers/google.firebase.analytics/", FIREBASE_CE_SERVICE),
    ("providers/firebase.auth/", FIREBASE_AUTH_CE_SERVICE),
    ("providers/google.firebase.database/", FIREBASE_DB_CE_SERVICE),
    ("providers/cloud.pubsub/", PUBSUB_CE_SERVICE),
    ("providers/cloud.storage/", STORAGE_CE_SERVICE),
    ("google.pubsub", PUBSUB_CE_SERVICE),
    ("google.storage", STORAGE_CE_SERVICE),
]

# Each pattern has exactly two groups: the CloudEvent resource and subject.
CE_SERVICE_TO_RESOURCE_RE: Dict[str, "re.Pattern[str]"] = {
    FIREBASE_CE_SERVICE: re.compile(r"^(projects/[^/]+)/(events/[^/]+)$"),
    FIREBASE_DB_CE_SERVICE: re.compile(r"^projects/_/(instances/[^/]+)/(refs/.+)$"),
    FIRESTORE_CE_SERVICE: re.compile(r"^(projects/[^/]+/databases/\(default\))/(documents/.+)$"),
    STORAGE_CE_SERVICE: re.compile(r"^(projects/_/buckets/[^/]+)/(objects/.+)$"),
}

FIREBASE_AUTH_METADATA_FIELDS_BACKGROUND_TO_CLOUD_EVENT = {
    "createdAt": "createTime",
    "lastSignedInAt": "lastSignInTime",
}

FIREBASE_DB_DEFAULT_DOMAIN = "firebaseio.com"
FIREBASE_DB_DEFAULT_LOCATION = "us-central1"

_CE_SOURCE_RE = re.compile(r"^//([^/]+)/(.+)$")
_FIREBASE_DB_LOCATION_RE = re.compile(r"locations/[^/]+/")

Classifier = Callable[[Dict[str, Any], str], Tuple[bool, Optional[BackgroundEvent]]]


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_data(data: Any) -> bytes:
    """JSON-encode event data; raw bytes are written as base64 strings."""
    return json.dumps(data, default=_json_default, ensure_ascii=False).encode("utf-8")


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def _replace_headers(headers: Mapping[str, str], updates: Dict[str, str]) -> Dict[str, str]:
    replaced = {key.lower() for key in updates}
    rewritten = {k: v for k, v in headers.items() if k.lower() not in replaced}
    rewritten.update(updates)
    return rewritten


# ---------------------------------------------------------------------------
# Background event classification
# ---------------------------------------------------------------------------


def _classify_wrapped_event(
    payload: Dict[str, Any], url_path: str
) -> Tuple[bool, Optional[BackgroundEvent]]:
    """``{"context": {...}, "data": ...}``"""
    if payload.get("context") is None:
        return False, None
    event = BackgroundEvent.model_validate(payload)
    return True, event if event.data is not None else None


def _classify_legacy_pubsub(
    payload: Dict[str, Any], url_path: str
) -> Tuple[bool, Optional[BackgroundEvent]]:
    """``{"subscription": ..., "message": {...}}`` from a push subscription."""
    if "data" in payload or not isinstance(payload.get("message"), dict):
        return False, None

    try:
        topic = extract_topic_from_request_path(url_path)
    except ValueError as e:
        logger.warning(str(e))
        topic = ""

    legacy = LegacyPubSubEvent.model_validate(payload)
    return True, legacy.to_background_event(topic)


def _classify_flat_event(
    payload: Dict[str, Any], url_path: str
) -> Tuple[bool, Optional[BackgroundEvent]]:
    """Context fields at the top level next to ``data``."""
    if payload.get("data") is None:
        return False, None
    # An event ID is what distinguishes a flat envelope from plain user data.
    if not payload.get("eventId"):
        return True, None
    metadata = Metadata.model_validate(payload)
    return True, BackgroundEvent(metadata=metadata, data=payload["data"])


BACKGROUND_EVENT_CLASSIFIERS: List[Classifier] = [
    _classify_wrapped_event,
    _classify_legacy_pubsub,
    _classify_flat_event,
]


def classify_background_event(
    payload: Any, url_path: str = ""
) -> Tuple[Optional[Metadata], Any]:
    """Classify an already-decoded request body.

    Classifiers run in order and the first one that recognizes the shape
    decides. A body none of them recognizes is simply not a background event.

    Returns:
        Tuple of (metadata, data), both None when not a background event

    Raises:
        ValueError: If a recognized envelope has invalid field values
    """
    if not isinstance(payload, dict):
        return None, None

    for classify in BACKGROUND_EVENT_CLASSIFIERS:
        matched, event = classify(payload, url_path)
        if not matched:
            continue
        if event is None or event.metadata is None or event.data is None:
            return None, None
        return event.metadata, event.data

    return None, None


def get_background_event(body: bytes, url_path: str = "") -> Tuple[Optional[Metadata], Any]:
    """Extract a background event from a raw request body.

    Args:
        body: Raw request body
        url_path: Request path, used to find the topic of legacy Pub/Sub pushes

    Returns:
        Tuple of (metadata, data), both None when the body is not a background event

    Raises:
        ValueError: If the body is not valid JSON or an envelope field is invalid
    """
    return classify_background_event(json.loads(body), url_path)


# ---------------------------------------------------------------------------
# Background event -> CloudEvent
# ---------------------------------------------------------------------------


def split_resource(service: str, resource: str) -> Tuple[str, str]:
    """Split a background event resource into CloudEvent resource and subject.

    For example, for Cloud Storage ``projects/_/buckets/b/objects/a/b.txt``
    becomes ``("projects/_/buckets/b", "objects/a/b.txt")``. Services without
    a pattern keep the resource unchanged and get no subject.

    Raises:
        EventConversionError: If the service's pattern does not match
    """
    pattern = CE_SERVICE_TO_RESOURCE_RE.get(service)
    if pattern is None:
        return resource, ""

    match = pattern.match(resource)
    if match is None:
        raise EventConversionError(
            f"resource regexp did not match {resource!r} for service {service}"
        )

    if pattern.groups != 2:
        raise EventConversionError(f"expected 2 match groups, got {pattern.groups}")

    return match.group(1), match.group(2)


def _infer_service(event_type: str) -> str:
    for prefix, service in SERVICE_BACKGROUND_TO_CLOUD_EVENT:
        if event_type.startswith(prefix):
            return service
    return ""


def _convert_firebase_auth_metadata(data: Any, renames: Dict[str, str]) -> None:
    # Only dicts with a "metadata" dict are touched, in place.
    if not isinstance(data, dict):
        return
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        return
    for old, new in renames.items():
        if old in metadata:
            metadata[new] = metadata.pop(old)


def _firebase_auth_subject(data: Any) -> str:
    if isinstance(data, dict) and "uid" in data:
        return f"users/{data['uid']}"
    return ""


def _firebase_db_location(domain: str) -> str:
    if not domain:
        raise EventConversionError(
            "unable to determine Firebase Realtime Database location: missing 'domain'"
        )
    if domain == FIREBASE_DB_DEFAULT_DOMAIN:
        return FIREBASE_DB_DEFAULT_LOCATION
    return domain.split(".", 1)[0]


def background_event_to_cloud_event(
    metadata: Metadata, data: Any, domain: str = ""
) -> Dict[str, Any]:
    """Build the structured CloudEvent equivalent of a background event.

    Args:
        metadata: Background event metadata
        data: Background event data, not modified
        domain: Top-level ``domain`` of Firebase Realtime Database events

    Returns:
        CloudEvent as a JSON-ready dictionary

    Raises:
        EventConversionError: If the event type, service or resource is not convertible
    """
    ce_type = TYPE_BACKGROUND_TO_CLOUD_EVENT.get(metadata.event_type)
    if ce_type is None:
        raise EventConversionError(
            f"unable to find CloudEvent equivalent event type for {metadata.event_type}"
        )

    resource = metadata.resource or Resource()
    service = resource.service or _infer_service(metadata.event_type)
    if not service:
        raise EventConversionError(
            f"unable to find CloudEvent equivalent service for {metadata.event_type}"
        )

    name, subject = split_resource(service, resource.name or resource.raw_path)
    data = copy.deepcopy(data)

    if service == PUBSUB_CE_SERVICE:
        if isinstance(data, dict):
            data.setdefault("messageId", metadata.event_id)
            if metadata.timestamp is not None:
                data.setdefault("publishTime", format_rfc3339(metadata.timestamp))
        data = {"message": data}

    if service == FIREBASE_AUTH_CE_SERVICE:
        _convert_firebase_auth_metadata(
            data, FIREBASE_AUTH_METADATA_FIELDS_BACKGROUND_TO_CLOUD_EVENT
        )
        subject = _firebase_auth_subject(data) or subject

    if service == FIREBASE_DB_CE_SERVICE:
        name = f"projects/_/locations/{_firebase_db_location(domain)}/{name}"

    event: Dict[str, Any] = {
        "id": metadata.event_id,
        "specversion": CE_SPEC_VERSION,
        "datacontenttype": "application/json",
        "type": ce_type,
        "source": f"//{service}/{name}",
        "data": data,
    }
    if metadata.timestamp is not None:
        event["time"] = format_rfc3339(metadata.timestamp)
    if subject:
        event["subject"] = subject
    return event


def convert_background_to_cloud_event_request(
    body: bytes, headers: Mapping[str, str], url_path: str = ""
) -> Tuple[bytes, Dict[str, str]]:
    """Rewrite a background event request as a structured CloudEvent request.

    Args:
        body: Raw request body
        headers: Request headers
        url_path: Request path

    Returns:
        Tuple of (new_body, new_headers) with Content-Type and Content-Length replaced

    Raises:
        EventConversionError: If the body is not a convertible background event
    """
    try:
        payload = json.loads(body)
        metadata, data = classify_background_event(payload, url_path)
    except ValueError as e:
        raise EventConversionError(
            f"parsing background event body {body.decode('utf-8', 'replace')}: {e}"
        ) from e

    if metadata is None or data is None:
        raise EventConversionError(
            f"unable to extract background event from {body.decode('utf-8', 'replace')}"
        )

    event = background_event_to_cloud_event(metadata, data, str(payload.get("domain") or ""))

    try:
        encoded = encode_data(event)
    except (TypeError, ValueError) as e:
        raise EventConversionError(f"Unable to marshal CloudEvent {event}: {e}", 400) from e

    new_headers = _replace_headers(
        headers,
        {
            CONTENT_TYPE_HEADER: CLOUDEVENT_JSON_CONTENT_TYPE,
            CONTENT_LENGTH_HEADER: str(len(encoded)),
        },
    )
    return encoded, new_headers


# ---------------------------------------------------------------------------
# CloudEvent -> background event
# ---------------------------------------------------------------------------


def is_binary_cloud_event(headers: Mapping[str, str]) -> bool:
    """True if any CloudEvent attribute header is present."""
    lowered = _lower_keys(headers)
    return any(name in lowered for name in CE_REQUIRED_HEADERS)


def is_structured_cloud_event(headers: Mapping[str, str], body: bytes) -> bool:
    """True for a CloudEvent carried as one JSON document."""
    content_type = _lower_keys(headers).get("content-type", "")
    if CLOUDEVENT_JSON_CONTENT_TYPE in content_type:
        return True
    try:
        payload = json.loads(body)
    except ValueError:
        return False
    return isinstance(payload, dict) and all(
        isinstance(payload.get(field), str) and payload[field]
        for field in ("specversion", "type", "source", "id")
    )


def looks_like_cloud_event(headers: Mapping[str, str]) -> bool:
    """Cheap check used before converting to a CloudEvent: Ce-Id or a cloudevents content type."""
    lowered = _lower_keys(headers)
    return bool(lowered.get(CE_ID_HEADER)) or "cloudevents" in lowered.get("content-type", "")


def cloud_event_to_background_event(
    attributes: Mapping[str, Any], data: Any
) -> Optional[Dict[str, Any]]:
    """Build the background event envelope equivalent of a CloudEvent.

    Args:
        attributes: CloudEvent context attributes (id, type, source, ...)
        data: CloudEvent data

    Returns:
        ``{"context": {...}, "data": ...}``, or None when the CloudEvent type
        has no background equivalent

    Raises:
        EventConversionError: If the source is not of the form
            ``//service/resource`` or the time is not a timestamp
    """
    event_type = TYPE_CLOUD_EVENT_TO_BACKGROUND.get(attributes.get("type", ""))
    if event_type is None:
        return None

    source = attributes.get("source", "")
    match = _CE_SOURCE_RE.match(source)
    if match is None:
        raise EventConversionError(f"unable to parse CloudEvent source {source!r}", 400)
    service, name = match.group(1), match.group(2)
    subject = attributes.get("subject") or ""
    data = copy.deepcopy(data)

    resource = Resource(raw_path=f"{name}/{subject}" if subject else name)
    if service == PUBSUB_CE_SERVICE:
        resource = Resource(service=service, name=name, type=PUBSUB_MESSAGE_TYPE)
        if isinstance(data, dict) and "message" in data:
            data = data["message"]
    elif service == STORAGE_CE_SERVICE:
        kind = data.get("kind") if isinstance(data, dict) else None
        resource = Resource(
            service=service,
            name=resource.raw_path,
            type=kind if isinstance(kind, str) else "",
        )
    elif service == FIREBASE_AUTH_CE_SERVICE:
        resource = Resource(raw_path=name)
        _convert_firebase_auth_metadata(
            data,
            {v: k for k, v in FIREBASE_AUTH_METADATA_FIELDS_BACKGROUND_TO_CLOUD_EVENT.items()},
        )
    elif service == FIREBASE_DB_CE_SERVICE:
        name = _FIREBASE_DB_LOCATION_RE.sub("", name, count=1)
        resource = Resource(raw_path=f"{name}/{subject}" if subject else name)

    try:
        metadata = Metadata(
            event_id=attributes.get("id", ""),
            event_type=event_type,
            timestamp=attributes.get("time") or None,
            resource=resource,
        )
    except ValueError as e:
        raise EventConversionError(f"unable to parse CloudEvent time: {e}", 400) from e
    return {"context": metadata.to_wire(), "data": data}


def convert_cloud_event_to_background_request(
    body: bytes, headers: Mapping[str, str]
) -> Optional[bytes]:
    """Rewrite a CloudEvent request body as a background event envelope.

    Args:
        body: Raw request body
        headers: Request headers

    Returns:
        The background event body, or None when the request is not a
        well-formed CloudEvent or has no background equivalent

    Raises:
        EventConversionError: If a recognized CloudEvent cannot be converted
    """
    if not (is_binary_cloud_event(headers) or is_structured_cloud_event(headers, body)):
        return None

    try:
        event = from_http(_lower_keys(headers), body)
    except cloud_exceptions.GenericException as e:
        logger.debug(f"Request is not a well-formed CloudEvent: {e}")
        return None

    attributes = event.get_attributes()
    if not all(attributes.get(name) for name in ("specversion", "type", "source", "id")):
        return None

    envelope = cloud_event_to_background_event(attributes, event.data)
    if envelope is None:
        return None

    try:
        return encode_data(envelope)
    except (TypeError, ValueError) as e:
        raise EventConversionError(f"Unable to encode background event: {e}", 400) from e
