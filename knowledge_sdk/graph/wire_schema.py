# knowledge_sdk/graph/wire_schema.py
# SPDX-License-Identifier: Apache-2.0
"""
Binary message types of the knowledge graph service.

The message classes are built at import time from a FileDescriptorProto and
registered in a private descriptor pool, so no protoc step is needed. Field
numbers mirror the service's `esriPBuffer.graph` schema as far as this SDK
uses it; unknown fields sent by newer servers are preserved by protobuf and
ignored here.

Usage
-----

    from knowledge_sdk.graph import wire_schema as pb

    header = pb.GraphApplyEditsHeader(minor_version=2)
    frame = pb.GraphQueryResultFrame.FromString(payload)
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "esriPBuffer.graph"

_F = descriptor_pb2.FieldDescriptorProto

_SCALARS = {
    "double": _F.TYPE_DOUBLE,
    "float": _F.TYPE_FLOAT,
    "int32": _F.TYPE_INT32,
    "uint32": _F.TYPE_UINT32,
    "sint32": _F.TYPE_SINT32,
    "int64": _F.TYPE_INT64,
    "uint64": _F.TYPE_UINT64,
    "sint64": _F.TYPE_SINT64,
    "bool": _F.TYPE_BOOL,
    "string": _F.TYPE_STRING,
    "bytes": _F.TYPE_BYTES,
}

# (name, number, type, repeated, oneof)
# `type` is a scalar name, a message/enum name, or "map<key,Value>".
FieldSpec = Tuple[str, int, str, bool, Optional[str]]


def _qualified(name: str) -> str:
    return f".{PACKAGE}.{name}"


def _entry_name(field_name: str) -> str:
    return "".join(part.capitalize() for part in field_name.split("_")) + "Entry"


def _set_type(field: descriptor_pb2.FieldDescriptorProto, type_name: str, enums: Iterable[str]) -> None:
    if type_name in _SCALARS:
        field.type = _SCALARS[type_name]
    elif type_name in enums:
        field.type = _F.TYPE_ENUM
        field.type_name = _qualified(type_name)
    else:
        field.type = _F.TYPE_MESSAGE
        field.type_name = _qualified(type_name)


def _add_enum(fdp: descriptor_pb2.FileDescriptorProto, name: str, values: Sequence[Tuple[str, int]]) -> None:
    enum = fdp.enum_type.add(name=name)
    for value_name, number in values:
        enum.value.add(name=value_name, number=number)


def _add_message(
    fdp: descriptor_pb2.FileDescriptorProto,
    name: str,
    fields: Sequence[FieldSpec],
) -> None:
    enums = {e.name for e in fdp.enum_type}
    msg = fdp.message_type.add(name=name)
    oneofs: list = []
    for field_name, number, type_name, repeated, oneof in fields:
        field = msg.field.add(name=field_name, number=number)
        field.json_name = field_name
        if type_name.startswith("map<"):
            key_type, value_type = type_name[4:-1].split(",")
            entry = msg.nested_type.add(name=_entry_name(field_name))
            entry.options.map_entry = True
            key = entry.field.add(name="key", number=1, label=_F.LABEL_OPTIONAL)
            key.json_name = "key"
            _set_type(key, key_type.strip(), enums)
            value = entry.field.add(name="value", number=2, label=_F.LABEL_OPTIONAL)
            value.json_name = "value"
            _set_type(value, value_type.strip(), enums)
            field.label = _F.LABEL_REPEATED
            field.type = _F.TYPE_MESSAGE
            field.type_name = f"{_qualified(name)}.{entry.name}"
            continue
        field.label = _F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL
        _set_type(field, type_name, enums)
        if oneof is not None:
            if oneof not in oneofs:
                oneofs.append(oneof)
                msg.oneof_decl.add(name=oneof)
            field.oneof_index = oneofs.index(oneof)


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(
        name="knowledge_sdk/esri_knowledge_graph.proto",
        package=PACKAGE,
        syntax="proto3",
    )

    # ---- enums --------------------------------------------------------------
    _add_enum(fdp, "QuantizeOriginPostion", [("upperLeft", 0), ("lowerLeft", 1)])
    _add_enum(fdp, "GeometryType", [
        ("esriGeometryTypePoint", 0),
        ("esriGeometryTypeMultipoint", 1),
        ("esriGeometryTypePolyline", 2),
        ("esriGeometryTypePolygon", 3),
        ("esriGeometryTypeMultipatch", 4),
        ("esriGeometryTypeNone", 127),
    ])
    _add_enum(fdp, "FieldType", [
        ("esriFieldTypeSmallInteger", 0),
        ("esriFieldTypeInteger", 1),
        ("esriFieldTypeSingle", 2),
        ("esriFieldTypeDouble", 3),
        ("esriFieldTypeString", 4),
        ("esriFieldTypeDate", 5),
        ("esriFieldTypeOID", 6),
        ("esriFieldTypeGeometry", 7),
        ("esriFieldTypeBlob", 8),
        ("esriFieldTypeRaster", 9),
        ("esriFieldTypeGUID", 10),
        ("esriFieldTypeGlobalID", 11),
        ("esriFieldTypeXML", 12),
        ("esriFieldTypeBigInteger", 13),
    ])
    _add_enum(fdp, "Cardinality", [
        ("esriRelCardinalityOneToOne", 0),
        ("esriRelCardinalityOneToMany", 1),
        ("esriRelCardinalityManyToMany", 2),
    ])

    # ---- quantization -------------------------------------------------------
    _add_message(fdp, "Scale", [
        ("x_scale", 1, "double", False, None),
        ("y_scale", 2, "double", False, None),
        ("z_scale", 3, "double", False, None),
        ("m_scale", 4, "double", False, None),
    ])
    _add_message(fdp, "Translate", [
        ("x_translate", 1, "double", False, None),
        ("y_translate", 2, "double", False, None),
        ("z_translate", 3, "double", False, None),
        ("m_translate", 4, "double", False, None),
    ])
    _add_message(fdp, "Transform", [
        ("quantize_origin_postion", 1, "QuantizeOriginPostion", False, None),
        ("scale", 2, "Scale", False, None),
        ("translate", 3, "Translate", False, None),
    ])

    # ---- values -------------------------------------------------------------
    _add_message(fdp, "EsriDefaultGeometry", [
        ("lengths", 1, "uint32", True, None),
        ("coords", 2, "sint64", True, None),
    ])
    _add_message(fdp, "GeometryValue", [
        ("geometry_type", 1, "GeometryType", False, None),
        ("geometry", 2, "EsriDefaultGeometry", False, None),
        ("has_z", 3, "bool", False, None),
        ("has_m", 4, "bool", False, None),
    ])
    _add_message(fdp, "PrimitiveValue", [
        ("sint32_value", 1, "sint32", False, "value"),
        ("uint32_value", 2, "uint32", False, "value"),
        ("sint64_value", 3, "sint64", False, "value"),
        ("uint64_value", 4, "uint64", False, "value"),
        ("string_value", 5, "string", False, "value"),
        ("float_value", 6, "float", False, "value"),
        ("double_value", 7, "double", False, "value"),
        ("date_value", 8, "sint64", False, "value"),
        ("uuid_value", 9, "bytes", False, "value"),
        ("geometry_value", 10, "GeometryValue", False, "value"),
        ("bool_value", 11, "bool", False, "value"),
        ("blob_value", 12, "bytes", False, "value"),
    ])
    # AnyValue is referenced before it is declared; proto type names resolve lazily.
    _add_message(fdp, "EntityValue", [
        ("type_name", 1, "string", False, None),
        ("properties", 2, "map<string,AnyValue>", False, None),
        ("id", 3, "AnyValue", False, None),
    ])
    _add_message(fdp, "RelationshipValue", [
        ("type_name", 1, "string", False, None),
        ("properties", 2, "map<string,AnyValue>", False, None),
        ("id", 3, "AnyValue", False, None),
        ("origin_id", 4, "AnyValue", False, None),
        ("destination_id", 5, "AnyValue", False, None),
    ])
    _add_message(fdp, "PathValue", [
        ("entities", 1, "AnyValue", True, None),
        ("relationships", 2, "AnyValue", True, None),
    ])
    _add_message(fdp, "ArrayValue", [
        ("values", 1, "AnyValue", True, None),
    ])
    _add_message(fdp, "ObjectValue", [
        ("values", 1, "map<string,AnyValue>", False, None),
    ])
    _add_message(fdp, "AnyValue", [
        ("primitive_value", 1, "PrimitiveValue", False, "value"),
        ("entity_value", 2, "EntityValue", False, "value"),
        ("relationship_value", 3, "RelationshipValue", False, "value"),
        ("path_value", 4, "PathValue", False, "value"),
        ("array_value", 5, "ArrayValue", False, "value"),
        ("object_value", 6, "ObjectValue", False, "value"),
    ])

    # ---- query results ------------------------------------------------------
    _add_message(fdp, "Row", [
        ("values", 1, "AnyValue", True, None),
    ])
    _add_message(fdp, "GraphError", [
        ("error_code", 1, "int32", False, None),
        ("error_message", 2, "string", False, None),
    ])
    _add_message(fdp, "GraphQueryResultHeader", [
        ("minor_version", 1, "uint32", False, None),
        ("error", 2, "GraphError", False, None),
        ("transform", 3, "Transform", False, None),
        ("header_keys", 4, "string", True, None),
        ("exceeded_transfer_limit", 5, "bool", False, None),
    ])
    _add_message(fdp, "GraphQueryResultFrame", [
        ("rows", 1, "Row", True, None),
        ("error", 2, "GraphError", False, None),
    ])

    # ---- data model ---------------------------------------------------------
    _add_message(fdp, "GraphProperty", [
        ("name", 1, "string", False, None),
        ("alias", 2, "string", False, None),
        ("field_type", 3, "FieldType", False, None),
        ("geometry_type", 4, "GeometryType", False, None),
        ("has_z", 5, "bool", False, None),
        ("has_m", 6, "bool", False, None),
        ("nullable", 7, "bool", False, None),
        ("editable", 8, "bool", False, None),
    ])
    _add_message(fdp, "GraphNamedObjectType", [
        ("name", 1, "string", False, None),
        ("alias", 2, "string", False, None),
        ("role", 3, "string", False, None),
        ("strict", 4, "bool", False, None),
        ("properties", 5, "GraphProperty", True, None),
    ])
    _add_message(fdp, "EntityType", [
        ("entity", 1, "GraphNamedObjectType", False, None),
    ])
    _add_message(fdp, "RelationshipType", [
        ("relationship", 1, "GraphNamedObjectType", False, None),
        ("origin_entity_types", 2, "string", True, None),
        ("dest_entity_types", 3, "string", True, None),
        ("cardinality", 4, "Cardinality", False, None),
    ])
    _add_message(fdp, "GraphDataModel", [
        ("timestamp", 1, "sint64", False, None),
        ("spatial_reference_wkid", 2, "int32", False, None),
        ("strict", 3, "bool", False, None),
        ("objectid_property", 4, "string", False, None),
        ("globalid_property", 5, "string", False, None),
        ("entity_types", 6, "EntityType", True, None),
        ("relationship_types", 7, "RelationshipType", True, None),
    ])

    # ---- edits --------------------------------------------------------------
    _add_message(fdp, "NamedObjectAdd", [
        ("properties", 1, "map<string,AnyValue>", False, None),
    ])
    _add_message(fdp, "NamedObjectAdds", [
        ("named_object_adds", 1, "NamedObjectAdd", True, None),
    ])
    _add_message(fdp, "Adds", [
        ("entities", 1, "map<string,NamedObjectAdds>", False, None),
        ("relationships", 2, "map<string,NamedObjectAdds>", False, None),
    ])
    _add_message(fdp, "GraphApplyEditsHeader", [
        ("minor_version", 1, "uint32", False, None),
        ("input_transform", 2, "Transform", False, None),
        ("cascade_delete", 3, "bool", False, None),
    ])
    _add_message(fdp, "GraphApplyEditsFrame", [
        ("adds", 1, "Adds", False, None),
    ])
    _add_message(fdp, "EditResult", [
        ("global_id", 1, "string", False, None),
        ("object_id", 2, "sint64", False, None),
        ("error", 3, "GraphError", False, None),
    ])
    _add_message(fdp, "EditResults", [
        ("add_results", 1, "EditResult", True, None),
    ])
    _add_message(fdp, "GraphApplyEditsResult", [
        ("error", 1, "GraphError", False, None),
        ("entity_add_results", 2, "map<string,EditResults>", False, None),
        ("relationship_add_results", 3, "map<string,EditResults>", False, None),
    ])
    return fdp


POOL = descriptor_pool.DescriptorPool()
FILE = POOL.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(POOL.FindMessageTypeByName(f"{PACKAGE}.{name}"))


Scale = _message_class("Scale")
Translate = _message_class("Translate")
Transform = _message_class("Transform")
EsriDefaultGeometry = _message_class("EsriDefaultGeometry")
GeometryValue = _message_class("GeometryValue")
PrimitiveValue = _message_class("PrimitiveValue")
EntityValue = _message_class("EntityValue")
RelationshipValue = _message_class("RelationshipValue")
PathValue = _message_class("PathValue")
ArrayValue = _message_class("ArrayValue")
ObjectValue = _message_class("ObjectValue")
AnyValue = _message_class("AnyValue")
Row = _message_class("Row")
GraphError = _message_class("GraphError")
GraphQueryResultHeader = _message_class("GraphQueryResultHeader")
GraphQueryResultFrame = _message_class("GraphQueryResultFrame")
GraphProperty = _message_class("GraphProperty")
GraphNamedObjectType = _message_class("GraphNamedObjectType")
EntityType = _message_class("EntityType")
RelationshipType = _message_class("RelationshipType")
GraphDataModel = _message_class("GraphDataModel")
NamedObjectAdd = _message_class("NamedObjectAdd")
NamedObjectAdds = _message_class("NamedObjectAdds")
Adds = _message_class("Adds")
GraphApplyEditsHeader = _message_class("GraphApplyEditsHeader")
GraphApplyEditsFrame = _message_class("GraphApplyEditsFrame")
EditResult = _message_class("EditResult")
EditResults = _message_class("EditResults")
GraphApplyEditsResult = _message_class("GraphApplyEditsResult")


def enum_name(enum: str, number: int) -> str:
    """Symbolic name of an enum value, e.g. enum_name("FieldType", 7)."""
    values = POOL.FindEnumTypeByName(f"{PACKAGE}.{enum}").values_by_number
    value = values.get(number)
    return value.name if value is not None else str(number)


def enum_value(enum: str, name: str) -> int:
    return POOL.FindEnumTypeByName(f"{PACKAGE}.{enum}").values_by_name[name].number
