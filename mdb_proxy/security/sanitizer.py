"""
Payload sanitization for client-supplied MongoDB payloads.

Every filter, update, document, projection and aggregation pipeline passes
through here before it reaches the driver. The sanitizer walks the payload
depth-first and rejects any key in the operator denylist, naming the exact
path of the offending key (``$or[0].$where``). Clean payloads are returned
unchanged, so sanitizing twice is the same as sanitizing once.

The denylist lives in ``constants.BLOCKED_OPERATORS``.
"""

import logging
from collections.abc import Mapping
from typing import Any

from ..constants import (
    BLOCKED_OPERATOR_PREFIXES,
    BLOCKED_OPERATORS,
    MAX_PAYLOAD_DEPTH,
    MAX_PIPELINE_STAGES,
    PIPELINE_CODE_OPERATORS,
    PIPELINE_WRITE_STAGES,
)
from ..exceptions import BlockedOperatorError, InvalidFormatError

logger = logging.getLogger(__name__)

FILTER = "filter"
UPDATE = "update"
DOCUMENT = "document"
PROJECTION = "projection"
PIPELINE = "pipeline"
VALIDATOR = "validator"

PAYLOAD_KINDS = (FILTER, UPDATE, DOCUMENT, PROJECTION)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


class PayloadSanitizer:
    """
    Rejects code-execution operators in client payloads.

    Raises instead of returning error values, so callers only ever see a
    payload that is safe to hand to the driver.
    """

    def __init__(
        self,
        max_depth: int = MAX_PAYLOAD_DEPTH,
        max_pipeline_stages: int = MAX_PIPELINE_STAGES,
        blocked_operators: frozenset[str] = BLOCKED_OPERATORS,
        blocked_prefixes: tuple[str, ...] = BLOCKED_OPERATOR_PREFIXES,
    ):
        """
        Initialize the sanitizer.

        Args:
            max_depth: Maximum nesting depth of a payload
            max_pipeline_stages: Maximum stages in an aggregation pipeline
            blocked_operators: Keys rejected anywhere in a payload
            blocked_prefixes: Key prefixes rejected anywhere in a payload
        """
        self.max_depth = max_depth
        self.max_pipeline_stages = max_pipeline_stages
        self.blocked_operators = frozenset(blocked_operators)
        self.blocked_prefixes = tuple(blocked_prefixes)

    def sanitize(self, payload: Any, kind: str) -> dict[str, Any]:
        """
        Validate a filter, update, document or projection.

        Args:
            payload: The decoded client payload
            kind: One of ``filter``, ``update``, ``document``, ``projection``

        Returns:
            The payload itself (``{}`` for a missing filter or projection)

        Raises:
            InvalidFormatError: If the payload has the wrong shape or is too deep
            BlockedOperatorError: If a denylisted operator is present
        """
        if kind not in PAYLOAD_KINDS:
            raise ValueError(f"Unknown payload kind: {kind!r}")

        if payload is None:
            if kind in (FILTER, PROJECTION):
                return {}
            if kind == UPDATE:
                raise InvalidFormatError("Update object is required")
            raise InvalidFormatError("Document is required")

        if not isinstance(payload, Mapping):
            raise InvalidFormatError(f"{kind.capitalize()} must be an object")

        if kind == UPDATE:
            if not payload:
                raise InvalidFormatError("Update object is required")
            bad_keys = [k for k in payload if not str(k).startswith("$")]
            if bad_keys:
                raise InvalidFormatError(
                    "Update must only contain update operators (e.g. $set), "
                    f"found {bad_keys[0]!r}"
                )

        self._walk(payload, "", 0, kind, self.blocked_operators, self.blocked_prefixes)
        return payload

    def sanitize_pipeline(self, pipeline: Any) -> list[dict[str, Any]]:
        """
        Validate a read-only aggregation pipeline.

        ``$expr`` and ``$$`` variables are legitimate inside pipelines; only
        the code-execution operators and write stages are refused.

        Raises:
            InvalidFormatError: If the pipeline has the wrong shape
            BlockedOperatorError: If a write stage or code operator is present
        """
        if not isinstance(pipeline, list):
            raise InvalidFormatError("Pipeline must be an array")

        if len(pipeline) > self.max_pipeline_stages:
            raise InvalidFormatError(
                f"Pipeline exceeds maximum stages: {len(pipeline)} > {self.max_pipeline_stages}"
            )

        for idx, stage in enumerate(pipeline):
            if not isinstance(stage, Mapping) or not stage:
                raise InvalidFormatError(f"Pipeline stage {idx} must be a non-empty object")

            for name in stage:
                if name in PIPELINE_WRITE_STAGES:
                    path = f"[{idx}].{name}"
                    raise BlockedOperatorError(
                        f"Invalid pipeline: Stage {name!r} is not allowed at {path}",
                        operator=str(name),
                        path=path,
                        payload_kind=PIPELINE,
                    )

            self._walk(stage, f"[{idx}]", 1, PIPELINE, PIPELINE_CODE_OPERATORS, ())

        return pipeline

    def sanitize_validator(self, validator: Any) -> dict[str, Any]:
        """
        Validate a collection validator for collMod.

        Validators legitimately use ``$jsonSchema`` and ``$expr``; only the
        code-execution operators are refused. ``None`` means "no validator".
        """
        if validator is None:
            return {}
        if not isinstance(validator, Mapping):
            raise InvalidFormatError("Validator must be an object")
        self._walk(validator, "", 0, VALIDATOR, PIPELINE_CODE_OPERATORS, ())
        return validator

    def _walk(
        self,
        value: Any,
        path: str,
        depth: int,
        kind: str,
        blocked: frozenset[str],
        prefixes: tuple[str, ...],
    ) -> None:
        if value is None:
            return

        if depth > self.max_depth:
            raise InvalidFormatError(
                f"Invalid {kind}: nesting exceeds maximum depth of {self.max_depth}"
            )

        if isinstance(value, Mapping):
            for key, child in value.items():
                key = str(key)
                key_path = _join(path, key)
                if key in blocked:
                    self._reject(kind, key_path, key, f'Blocked operator "{key}"')
                for prefix in prefixes:
                    if key.startswith(prefix):
                        self._reject(
                            kind, key_path, key, f'Blocked operator prefix "{prefix}" in "{key}"'
                        )
                self._walk(child, key_path, depth + 1, kind, blocked, prefixes)
        elif isinstance(value, (list, tuple)):
            for idx, item in enumerate(value):
                self._walk(item, f"{path}[{idx}]", depth + 1, kind, blocked, prefixes)

    @staticmethod
    def _reject(kind: str, path: str, operator: str, what: str) -> None:
        logger.warning(f"Rejected {kind}: operator {operator!r} at {path}")
        raise BlockedOperatorError(
            f"Invalid {kind}: {what} found at {path}",
            operator=operator,
            path=path,
            payload_kind=kind,
        )
