"""Tool registry for actionflow.

Tool definitions are declarative records loaded from a JSON file:

    {"tools": [{"name": "fetch_emails",
                "description": "...",
                "providerConfigKey": "google-mail",
                "category": "Email",
                "parameters": {"type": "object", "properties": {...}}}]}

A bare list of records and the legacy category map
(``{"Email": [...], "CRM": [...]}``) are accepted too.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from actionflow.exceptions import ConfigurationError, ToolNotFound, ToolValidationError
from actionflow.execution import ParameterDefinition

logger = logging.getLogger(__name__)

ConditionFn = Callable[[dict], list[str]]

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Email": ("email", "emails", "mail", "inbox", "send", "reply"),
    "Calendar": ("calendar", "event", "events", "meeting", "meetings", "schedule"),
    "CRM": ("salesforce", "crm", "deal", "deals", "contact", "contacts",
            "account", "accounts", "lead", "leads", "opportunity"),
}

_JSON_TYPE_MAP: dict[str, type] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}

# Keys that only make sense to the client and are stripped before a schema
# is offered to a completion model.
_CLIENT_ONLY_KEYS = ("prompt", "hint")


def is_blank(value: Any) -> bool:
    """True for None and for strings that are empty after stripping."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


class ConditionalRule(BaseModel):
    """Declarative business rule evaluated against a step's arguments.

    ``{"anyOf": ["recordId", "filters"]}`` requires at least one of the names.
    ``{"ifField": "entityType", "equals": "Deal", "require": ["amount"]}``
    requires names only when another argument has a given value.
    """

    model_config = ConfigDict(populate_by_name=True)

    any_of: list[str] = Field(default_factory=list, alias="anyOf")
    if_field: Optional[str] = Field(default=None, alias="ifField")
    equals: Any = None
    require: list[str] = Field(default_factory=list)

    def missing(self, arguments: dict) -> list[str]:
        if self.any_of:
            if any(not is_blank(arguments.get(name)) for name in self.any_of):
                return []
            return list(self.any_of)
        if self.if_field is not None and arguments.get(self.if_field) != self.equals:
            return []
        return [name for name in self.require if is_blank(arguments.get(name))]


class ToolDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: str = ""
    display_name: Optional[str] = Field(default=None, alias="displayName")
    parameters: dict = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    provider_config_key: Optional[str] = Field(default=None, alias="providerConfigKey")
    action_name: Optional[str] = Field(default=None, alias="actionName")
    category: str = "General"
    rules: list[ConditionalRule] = Field(default_factory=list)

    @property
    def properties(self) -> dict:
        return self.parameters.get("properties", {}) or {}

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []) or [])


def _json_schema_to_python_type(prop_schema: dict, prop_name: str, parent_name: str) -> Any:
    """Map one JSON Schema property to a Python annotation.

    Unknown constructs ($ref, anyOf, type unions) become Any.
    """
    if "enum" in prop_schema:
        return Literal[tuple(prop_schema["enum"])]  # type: ignore[valid-type]

    schema_type = prop_schema.get("type")
    if not isinstance(schema_type, str):
        return Any

    if schema_type in _JSON_TYPE_MAP:
        return _JSON_TYPE_MAP[schema_type]

    if schema_type == "array":
        items = prop_schema.get("items") or {}
        if items.get("type") in _JSON_TYPE_MAP:
            return list[_JSON_TYPE_MAP[items["type"]]]
        return list

    if schema_type == "object":
        if prop_schema.get("properties"):
            return schema_to_model(f"{parent_name}_{prop_name}", prop_schema)
        return dict

    return Any


def schema_to_model(name: str, schema: dict) -> type[BaseModel]:
    """Build a pydantic model that validates arguments against a JSON schema.

    Unknown argument names are kept so connector-specific extras survive.
    """
    required = set(schema.get("required", []) or [])
    fields: dict[str, Any] = {}

    for prop_name, prop_schema in (schema.get("properties") or {}).items():
        python_type = _json_schema_to_python_type(prop_schema, prop_name, name)
        is_required = prop_name in required
        default = ... if is_required else prop_schema.get("default", None)
        if not is_required and default is None:
            python_type = Optional[python_type]
        fields[prop_name] = (
            python_type,
            Field(default=default, description=prop_schema.get("description", "")),
        )

    return create_model(
        f"{name}_Input", __config__=ConfigDict(extra="allow"), **fields
    )


def _public_schema(schema: dict) -> dict:
    properties = {
        name: {k: v for k, v in prop.items() if k not in _CLIENT_ONLY_KEYS}
        for name, prop in (schema.get("properties") or {}).items()
    }
    public = {k: v for k, v in schema.items() if k != "properties"}
    public.setdefault("type", "object")
    public["properties"] = properties
    return public


def _parse_config(raw: Any) -> list[ToolDefinition]:
    if isinstance(raw, dict) and "tools" in raw:
        records = raw["tools"]
    elif isinstance(raw, list):
        records = raw
    elif isinstance(raw, dict):
        # legacy layout keyed by category
        records = []
        for category, items in raw.items():
            for item in items or []:
                records.append({"category": category, **item})
    else:
        raise ConfigurationError("Tool configuration must be a list or an object")

    return [ToolDefinition.model_validate(record) for record in records]


class ToolRegistry:
    """Schema lookups for every configured tool.

    Args:
        config_path: JSON file with tool definitions. Falls back to the
            ACTIONFLOW_TOOL_CONFIG environment variable; no file means the
            registry starts empty.
        tools: Extra definitions registered on top of the file.
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        tools: Optional[list[Union[ToolDefinition, dict]]] = None,
    ):
        path = config_path or os.environ.get("ACTIONFLOW_TOOL_CONFIG")
        self.config_path = Path(path) if path else None
        self._loaded: dict[str, ToolDefinition] = {}
        self._registered: dict[str, ToolDefinition] = {}
        self._rules: dict[str, list[ConditionFn]] = {}
        self._models: dict[str, type[BaseModel]] = {}
        self._mtime: Optional[float] = None

        for tool in tools or []:
            self.register(tool)
        if self.config_path:
            self.load()

    # --- loading ---

    def load(self) -> None:
        if self.config_path is None:
            raise ConfigurationError("No tool configuration path set")
        try:
            raw = json.loads(self.config_path.read_text())
        except FileNotFoundError as e:
            raise ConfigurationError(f"Tool configuration not found: {self.config_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid tool configuration {self.config_path}: {e}") from e

        self._loaded = {tool.name: tool for tool in _parse_config(raw)}
        self._models.clear()
        self._mtime = self.config_path.stat().st_mtime
        logger.info(f"Loaded {len(self._loaded)} tool definitions from {self.config_path}")

    def reload(self) -> None:
        self.load()

    def reload_if_changed(self) -> bool:
        """Reload when the configuration file changed on disk."""
        if self.config_path is None:
            return False
        mtime = self.config_path.stat().st_mtime
        if mtime == self._mtime:
            return False
        self.load()
        return True

    def register(self, tool: Union[ToolDefinition, dict]) -> ToolDefinition:
        if isinstance(tool, dict):
            tool = ToolDefinition.model_validate(tool)
        self._registered[tool.name] = tool
        self._models.pop(tool.name, None)
        return tool

    def add_rule(self, tool_name: str, rule: ConditionFn) -> None:
        """Attach a callable rule returning the names it considers missing."""
        self._rules.setdefault(tool_name, []).append(rule)

    # --- lookups ---

    @property
    def _tools(self) -> dict[str, ToolDefinition]:
        return {**self._loaded, **self._registered}

    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def categories(self) -> list[str]:
        return sorted({tool.category for tool in self._tools.values()})

    def find(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get(self, name: str) -> ToolDefinition:
        tool = self.find(name)
        if tool is None:
            raise ToolNotFound(f"Tool '{name}' not found")
        return tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def input_schema(self, name: str) -> dict:
        return self.get(name).parameters

    def display_name(self, name: str) -> str:
        tool = self.get(name)
        return tool.display_name or name.replace("_", " ").title()

    def provider_config_key(self, name: str) -> Optional[str]:
        return self.get(name).provider_config_key

    def action_name(self, name: str) -> str:
        return self.get(name).action_name or name

    def has_parameters(self, name: str) -> bool:
        return bool(self.get(name).properties)

    def required_params(self, name: str) -> list[str]:
        return self.get(name).required

    # --- parameter checks ---

    def find_missing_required_params(self, name: str, arguments: dict) -> list[str]:
        return [p for p in self.required_params(name) if is_blank(arguments.get(p))]

    def find_conditionally_missing_params(self, name: str, arguments: dict) -> list[str]:
        """Names required by business rules rather than by the schema.

        Optional properties that carry a ``prompt`` or ``hint`` count as
        conditionally required while absent.
        """
        tool = self.get(name)
        required = set(tool.required)
        found: list[str] = []

        for prop_name, prop in tool.properties.items():
            if prop_name in required:
                continue
            if (prop.get("prompt") or prop.get("hint")) and is_blank(arguments.get(prop_name)):
                found.append(prop_name)

        for rule in tool.rules:
            found.extend(rule.missing(arguments))
        for fn in self._rules.get(name, []):
            found.extend(fn(arguments) or [])

        return [n for n in dict.fromkeys(found) if n not in required]

    def missing_params(self, name: str, arguments: dict) -> list[str]:
        missing = self.find_missing_required_params(name, arguments)
        missing += self.find_conditionally_missing_params(name, arguments)
        return list(dict.fromkeys(missing))

    def parameter_definitions(
        self,
        name: str,
        arguments: dict,
        missing: Optional[list[str]] = None,
    ) -> list[ParameterDefinition]:
        tool = self.get(name)
        required = set(tool.required) | set(missing or [])
        definitions = []
        for prop_name, prop in tool.properties.items():
            prop_type = prop.get("type", "string")
            if isinstance(prop_type, list):
                prop_type = "|".join(prop_type)
            definitions.append(
                ParameterDefinition(
                    name=prop_name,
                    type=prop_type,
                    description=prop.get("prompt") or prop.get("description") or prop_name,
                    required=prop_name in required,
                    current_value=arguments.get(prop_name),
                    hint=prop.get("hint"),
                    enum=prop.get("enum"),
                )
            )
        return definitions

    def validate_arguments(self, name: str, arguments: dict) -> dict:
        """Validate arguments against the tool schema and return them coerced.

        Raises:
            ToolValidationError: listing missing and invalid field names.
        """
        model = self._models.get(name)
        if model is None:
            model = schema_to_model(name, self.input_schema(name))
            self._models[name] = model

        try:
            validated = model(**arguments)
        except ValidationError as e:
            missing, invalid = [], []
            for err in e.errors():
                field_name = str(err["loc"][0]) if err["loc"] else name
                target = missing if err["type"] == "missing" else invalid
                if field_name not in target:
                    target.append(field_name)
            raise ToolValidationError(
                f"Invalid arguments for '{name}': {', '.join(missing + invalid)}",
                missing=missing,
                invalid=invalid,
            ) from e

        return validated.model_dump(exclude_unset=True)

    # --- completion-model views ---

    def to_openai_tools(self, categories: Optional[list[str]] = None) -> list[dict]:
        tools = self.definitions()
        if categories:
            tools = [t for t in tools if t.category in categories]
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": _public_schema(tool.parameters),
                },
            }
            for tool in tools
        ]

    def relevant_categories(self, text: str) -> list[str]:
        """Categories whose keywords appear in the text; all when none match."""
        words = set(re.findall(r"[a-z]+", text.lower()))
        matched = [
            category
            for category, keywords in CATEGORY_KEYWORDS.items()
            if words.intersection(keywords)
        ]
        return matched or self.categories()
