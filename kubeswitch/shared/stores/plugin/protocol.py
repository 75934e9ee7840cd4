"""Messages and method paths of the ``kubeconfigstore.v1`` plugin service.

The descriptors are assembled at import time so no generated ``_pb2``
modules are needed; the wire format is identical to the service compiled
from ``kubeconfigstore/v1/kubeconfig_store.proto``.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "kubeconfigstore.v1"
SERVICE_NAME = f"{PACKAGE}.KubeconfigStoreService"
PROTO_FILE = "kubeconfigstore/v1/kubeconfig_store.proto"

_FIELD = descriptor_pb2.FieldDescriptorProto

# message name -> [(field name, number, type)]; "map" marks a map<string,string>
_MESSAGES: Dict[str, List[Tuple[str, int, str]]] = {
    "GetIDRequest": [],
    "GetIDResponse": [("id", 1, "string")],
    "GetContextPrefixRequest": [("path", 1, "string")],
    "GetContextPrefixResponse": [("prefix", 1, "string")],
    "VerifyKubeconfigPathsRequest": [],
    "VerifyKubeconfigPathsResponse": [],
    "StartSearchRequest": [],
    "StartSearchResponse": [("kubeconfig_path", 1, "string"), ("tags", 2, "map")],
    "GetKubeconfigForPathRequest": [("path", 1, "string"), ("tags", 2, "map")],
    "GetKubeconfigForPathResponse": [("kubeconfig", 1, "bytes")],
}

# method name -> (request, response, server streaming)
METHODS: Dict[str, Tuple[str, str, bool]] = {
    "GetID": ("GetIDRequest", "GetIDResponse", False),
    "GetContextPrefix": ("GetContextPrefixRequest", "GetContextPrefixResponse", False),
    "VerifyKubeconfigPaths": ("VerifyKubeconfigPathsRequest", "VerifyKubeconfigPathsResponse", False),
    "StartSearch": ("StartSearchRequest", "StartSearchResponse", True),
    "GetKubeconfigForPath": ("GetKubeconfigForPathRequest", "GetKubeconfigForPathResponse", False),
}


def method_path(method: str) -> str:
    return f"/{SERVICE_NAME}/{method}"


def _add_message(file_proto: descriptor_pb2.FileDescriptorProto, name: str, fields) -> None:
    message = file_proto.message_type.add(name=name)
    for field_name, number, kind in fields:
        if kind == "map":
            entry_name = "".join(part.capitalize() for part in field_name.split("_")) + "Entry"
            entry = message.nested_type.add(name=entry_name)
            entry.options.map_entry = True
            entry.field.add(name="key", number=1, type=_FIELD.TYPE_STRING, label=_FIELD.LABEL_OPTIONAL)
            entry.field.add(name="value", number=2, type=_FIELD.TYPE_STRING, label=_FIELD.LABEL_OPTIONAL)
            message.field.add(
                name=field_name,
                number=number,
                type=_FIELD.TYPE_MESSAGE,
                label=_FIELD.LABEL_REPEATED,
                type_name=f".{PACKAGE}.{name}.{entry_name}",
            )
        else:
            proto_type = _FIELD.TYPE_BYTES if kind == "bytes" else _FIELD.TYPE_STRING
            message.field.add(
                name=field_name, number=number, type=proto_type, label=_FIELD.LABEL_OPTIONAL
            )


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name=PROTO_FILE, package=PACKAGE, syntax="proto3"
    )
    for name, fields in _MESSAGES.items():
        _add_message(file_proto, name, fields)

    service = file_proto.service.add(name="KubeconfigStoreService")
    for method, (request, response, streaming) in METHODS.items():
        service.method.add(
            name=method,
            input_type=f".{PACKAGE}.{request}",
            output_type=f".{PACKAGE}.{response}",
            server_streaming=streaming,
        )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())

MESSAGES = {
    name: message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.{name}"))
    for name in _MESSAGES
}

GetIDRequest = MESSAGES["GetIDRequest"]
GetIDResponse = MESSAGES["GetIDResponse"]
GetContextPrefixRequest = MESSAGES["GetContextPrefixRequest"]
GetContextPrefixResponse = MESSAGES["GetContextPrefixResponse"]
VerifyKubeconfigPathsRequest = MESSAGES["VerifyKubeconfigPathsRequest"]
VerifyKubeconfigPathsResponse = MESSAGES["VerifyKubeconfigPathsResponse"]
StartSearchRequest = MESSAGES["StartSearchRequest"]
StartSearchResponse = MESSAGES["StartSearchResponse"]
GetKubeconfigForPathRequest = MESSAGES["GetKubeconfigForPathRequest"]
GetKubeconfigForPathResponse = MESSAGES["GetKubeconfigForPathResponse"]


def request_class(method: str):
    return MESSAGES[METHODS[method][0]]


def response_class(method: str):
    return MESSAGES[METHODS[method][1]]
