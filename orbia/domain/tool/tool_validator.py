# Parameter validation
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import jsonschema


@dataclass
class ValidationResult:
    is_valid: bool
    fields: Dict[str, str] = field(default_factory=dict)


def _is_iso_datetime(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


class ToolParameterValidator:
    """Checks tool arguments against the tool's JSON schema before any network call"""

    @staticmethod
    def validate_tool_call(
        schema: Dict[str, Any],
        parameters: Dict[str, Any],
        custom_validation: Optional[Callable[[Dict[str, Any]], Dict[str, str]]] = None
    ) -> ValidationResult:
        problems: Dict[str, str] = {}
        validator = jsonschema.Draft7Validator(schema)

        for error in validator.iter_errors(parameters):
            if error.validator == "required":
                for name in error.validator_value:
                    if name not in parameters:
                        problems.setdefault(name, f"Missing required field '{name}'")
            elif error.path:
                problems.setdefault(str(error.path[0]), error.message)
            else:
                problems.setdefault("arguments", error.message)

        # Blank strings count as missing for required fields
        for name in schema.get("required", []):
            value = parameters.get(name)
            if isinstance(value, str) and not value.strip():
                problems.setdefault(name, f"Missing required field '{name}'")

        for name, prop in schema.get("properties", {}).items():
            if prop.get("format") == "date-time" and name in parameters and name not in problems:
                if not _is_iso_datetime(parameters[name]):
                    problems[name] = f"'{name}' must be an ISO 8601 date-time"

        if custom_validation and not problems:
            problems.update(custom_validation(parameters))

        return ValidationResult(not problems, problems)
