# chatbridge/adapters/gemini_schema.py

"""
Converts JSON schemas (as produced by pydantic) into the OpenAPI subset that
Gemini accepts for function declarations.

Gemini rejects `$ref`/`$defs`, `title`, `default`, `additionalProperties` and
`type: null`, so references are inlined, `Optional[...]` becomes
`nullable: true`, and unsupported keywords are dropped.
"""

from typing import Any, Dict

SUPPORTED_KEYWORDS = frozenset({
    "type",
    "format",
    "description",
    "nullable",
    "enum",
    "properties",
    "required",
    "items",
    "minItems",
    "maxItems",
    "minimum",
    "maximum",
    "minLength",
    "maxLength",
    "pattern",
    "anyOf",
    "propertyOrdering",
})


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    if not schema:
        return {"type": "object", "properties": {}}
    definitions = {**schema.get("definitions", {}), **schema.get("$defs", {})}
    return _convert(schema, definitions)


def _without(node: Dict[str, Any], key: str) -> Dict[str, Any]:
    return {k: v for k, v in node.items() if k != key}


def _convert(node: Any, definitions: Dict[str, Any]) -> Any:
    if isinstance(node, list):
        return [_convert(item, definitions) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        target = definitions.get(node["$ref"].rsplit("/", 1)[-1], {})
        return _convert({**target, **_without(node, "$ref")}, definitions)

    # pydantic wraps a described reference as allOf: [{$ref}]
    if "allOf" in node and len(node["allOf"]) == 1:
        return _convert({**node["allOf"][0], **_without(node, "allOf")}, definitions)

    if "anyOf" in node:
        variants = [v for v in node["anyOf"] if not (isinstance(v, dict) and v.get("type") == "null")]
        nullable = len(variants) != len(node["anyOf"])
        rest = _without(node, "anyOf")
        if len(variants) == 1:
            converted = _convert({**variants[0], **rest}, definitions)
        else:
            converted = _convert(rest, definitions)
            converted["anyOf"] = [_convert(v, definitions) for v in variants]
        if nullable:
            converted["nullable"] = True
        return converted

    result: Dict[str, Any] = {}
    for key, value in node.items():
        if key == "const":
            result["enum"] = [value]
        elif key not in SUPPORTED_KEYWORDS:
            continue
        elif key == "properties":
            result[key] = {name: _convert(prop, definitions) for name, prop in value.items()}
        elif key == "items":
            result[key] = _convert(value, definitions)
        elif key == "type" and isinstance(value, list):
            types = [t for t in value if t != "null"]
            result[key] = types[0] if types else "string"
            if len(types) != len(value):
                result["nullable"] = True
        else:
            result[key] = value
    if result.get("type") == "object" and "properties" not in result:
        result["properties"] = {}
    return result
