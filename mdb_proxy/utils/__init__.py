"""
Utility functions for MDB_PROXY.
"""

from .mongo import (
    bson_type_name,
    clean_mongo_value,
    error_text,
    is_authorization_error,
    is_restricted_error,
    is_valid_object_id,
    parse_json_param,
    parse_sort,
    to_object_id,
)

__all__ = [
    "bson_type_name",
    "clean_mongo_value",
    "error_text",
    "is_authorization_error",
    "is_restricted_error",
    "is_valid_object_id",
    "parse_json_param",
    "parse_sort",
    "to_object_id",
]
