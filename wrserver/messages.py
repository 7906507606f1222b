"""Protobuf message classes for the lookup endpoint.

The lookup endpoint speaks the Web Risk ``uris:search`` schema
(package ``google.cloud.webrisk.v1``)::

    enum ThreatType {
      THREAT_TYPE_UNSPECIFIED = 0; MALWARE = 1; SOCIAL_ENGINEERING = 2;
      UNWANTED_SOFTWARE = 3; SOCIAL_ENGINEERING_EXTENDED_COVERAGE = 4;
    }
    message SearchUrisRequest {
      string uri = 1;
      repeated ThreatType threat_types = 2;
    }
    message SearchUrisResponse {
      message ThreatUri {
        repeated ThreatType threat_types = 1;
        google.protobuf.Timestamp expire_time = 2;
      }
      ThreatUri threat = 1;
    }

The descriptors are built at import time into a private DescriptorPool, so
no generated ``_pb2`` module is needed and the names cannot collide with an
installed Web Risk client library.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory, timestamp_pb2

PACKAGE = "google.cloud.webrisk.v1"

_FDP = descriptor_pb2.FieldDescriptorProto

_THREAT_TYPE_VALUES = (
    ("THREAT_TYPE_UNSPECIFIED", 0),
    ("MALWARE", 1),
    ("SOCIAL_ENGINEERING", 2),
    ("UNWANTED_SOFTWARE", 3),
    ("SOCIAL_ENGINEERING_EXTENDED_COVERAGE", 4),
)


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    threat_type_ref = f".{PACKAGE}.ThreatType"

    file_proto = descriptor_pb2.FileDescriptorProto(
        name="wrserver/webrisk.proto",
        package=PACKAGE,
        syntax="proto3",
        dependency=["google/protobuf/timestamp.proto"],
    )

    enum_proto = file_proto.enum_type.add(name="ThreatType")
    for name, number in _THREAT_TYPE_VALUES:
        enum_proto.value.add(name=name, number=number)

    request = file_proto.message_type.add(name="SearchUrisRequest")
    request.field.add(
        name="uri", number=1, json_name="uri",
        type=_FDP.TYPE_STRING, label=_FDP.LABEL_OPTIONAL,
    )
    request.field.add(
        name="threat_types", number=2, json_name="threatTypes",
        type=_FDP.TYPE_ENUM, label=_FDP.LABEL_REPEATED, type_name=threat_type_ref,
    )

    response = file_proto.message_type.add(name="SearchUrisResponse")
    threat_uri = response.nested_type.add(name="ThreatUri")
    threat_uri.field.add(
        name="threat_types", number=1, json_name="threatTypes",
        type=_FDP.TYPE_ENUM, label=_FDP.LABEL_REPEATED, type_name=threat_type_ref,
    )
    threat_uri.field.add(
        name="expire_time", number=2, json_name="expireTime",
        type=_FDP.TYPE_MESSAGE, label=_FDP.LABEL_OPTIONAL,
        type_name=".google.protobuf.Timestamp",
    )
    response.field.add(
        name="threat", number=1, json_name="threat",
        type=_FDP.TYPE_MESSAGE, label=_FDP.LABEL_OPTIONAL,
        type_name=f".{PACKAGE}.SearchUrisResponse.ThreatUri",
    )
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(timestamp_pb2.DESCRIPTOR.serialized_pb)
_pool.AddSerializedFile(_build_file().SerializeToString())

SearchUrisRequest = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.SearchUrisRequest")
)
SearchUrisResponse = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.SearchUrisResponse")
)
