"""
Switchboard Capability Registry

Decorator-based registration for capabilities ("tools") with automatic JSON
Schema generation, plus an optional pydantic parameter model used for
structured parameter extraction.

Usage:
    from switchboard.core.registry import capability, get_tool_registry

    class LookupParams(BaseModel):
        period: Optional[str] = None

    @capability(name="okr_lookup", params=LookupParams)
    async def okr_lookup(period: str = "") -> dict:
        '''Look up OKR metrics for a period.'''
        return {"period": period}
"""

import inspect
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Type, Union, get_type_hints

from pydantic import BaseModel

# =============================================================================
# Type to JSON Schema Mapping
# =============================================================================

TYPE_MAP = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
    type(None): "null",
}


def python_type_to_json_schema(py_type: Any) -> Dict[str, Any]:
    """Convert a Python type hint to a JSON Schema type definition.

    Args:
        py_type: A Python type or typing annotation

    Returns:
        JSON Schema type definition dict
    """
    if py_type is None or py_type is type(None):
        return {"type": "null"}

    if py_type in TYPE_MAP:
        return {"type": TYPE_MAP[py_type]}

    origin = getattr(py_type, "__origin__", None)
    args = getattr(py_type, "__args__", ())

    if origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1:
            return python_type_to_json_schema(non_none_types[0])
        return {"anyOf": [python_type_to_json_schema(t) for t in non_none_types]}

    if origin is list:
        if args:
            return {"type": "array", "items": python_type_to_json_schema(args[0])}
        return {"type": "array"}

    if origin is dict:
        return {"type": "object"}

    # Unknown types are passed to the model as strings
    return {"type": "string"}


def parse_docstring(docstring: Optional[str]) -> Dict[str, Any]:
    """Parse a Google-style docstring to extract description and argument docs.

    Args:
        docstring: The function's docstring

    Returns:
        Dict with 'description' (str) and 'args' (dict of arg name -> description)
    """
    if not docstring:
        return {"description": "", "args": {}}

    description_lines = []
    args_section = False
    current_arg = None
    args: Dict[str, str] = {}

    for line in docstring.strip().split("\n"):
        stripped = line.strip()

        if stripped.lower() in ("args:", "arguments:", "parameters:"):
            args_section = True
            continue

        if stripped.lower() in ("returns:", "return:", "raises:", "example:", "examples:"):
            args_section = False
            current_arg = None
            continue

        if args_section:
            if ":" in stripped:
                arg_name, arg_desc = stripped.split(":", 1)
                current_arg = arg_name.strip()
                args[current_arg] = arg_desc.strip()
            elif current_arg and stripped:
                args[current_arg] += " " + stripped
        elif stripped:
            description_lines.append(stripped)

    return {"description": " ".join(description_lines), "args": args}


def generate_function_schema(func: Callable, name: Optional[str] = None) -> Dict[str, Any]:
    """Generate an OpenAI function calling schema from a Python function.

    Args:
        func: The function to generate schema for
        name: Optional override for function name

    Returns:
        OpenAI function calling schema dict
    """
    func_name = name or func.__name__
    sig = inspect.signature(func)

    try:
        hints = get_type_hints(func)
    except Exception:
        hints = {}

    doc_info = parse_docstring(func.__doc__)

    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls") or param.kind in (param.VAR_KEYWORD, param.VAR_POSITIONAL):
            continue

        type_schema = python_type_to_json_schema(hints.get(param_name, str))
        if param_name in doc_info["args"]:
            type_schema["description"] = doc_info["args"][param_name]

        properties[param_name] = type_schema

        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    return {
        "type": "function",
        "function": {
            "name": func_name,
            "description": doc_info["description"],
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


# =============================================================================
# Registry Data Structures
# =============================================================================

@dataclass
class ToolEntry:
    """Registered capability entry."""
    name: str
    func: Callable
    schema: Dict[str, Any]
    description: str
    is_async: bool = False
    params_model: Optional[Type[BaseModel]] = None
    extraction_prompt: str = ""
    mutating: bool = False


_TOOL_REGISTRY: Dict[str, ToolEntry] = {}


# =============================================================================
# Decorator
# =============================================================================

def capability(
    name: Optional[str] = None,
    description: Optional[str] = None,
    params: Optional[Type[BaseModel]] = None,
    extraction_prompt: str = "",
    mutating: bool = False,
) -> Callable:
    """Decorator to register a function as a capability.

    Args:
        name: Optional override for capability name (defaults to function name)
        description: Optional override for description (defaults to docstring)
        params: Pydantic model describing parameters for structured extraction
        extraction_prompt: Instructions for the extraction model
        mutating: Whether the capability changes external state irreversibly.
            Mutating capabilities are refused by the direct executor.

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        tool_name = name or func.__name__
        schema = generate_function_schema(func, tool_name)

        if description:
            schema["function"]["description"] = description

        is_async = inspect.iscoroutinefunction(func)

        _TOOL_REGISTRY[tool_name] = ToolEntry(
            name=tool_name,
            func=func,
            schema=schema,
            description=schema["function"]["description"],
            is_async=is_async,
            params_model=params,
            extraction_prompt=extraction_prompt.strip(),
            mutating=mutating,
        )

        @wraps(func)
        def wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            return await func(*args, **kwargs)

        return async_wrapper if is_async else wrapper

    return decorator


# =============================================================================
# Registry Access Functions
# =============================================================================

def get_tool_registry() -> Dict[str, ToolEntry]:
    """Get the global capability registry."""
    return _TOOL_REGISTRY


def get_tool(name: str) -> Optional[ToolEntry]:
    """Get a specific capability by name."""
    return _TOOL_REGISTRY.get(name)


def get_all_tool_schemas() -> List[Dict[str, Any]]:
    """Get function schemas for all registered capabilities."""
    return [entry.schema for entry in _TOOL_REGISTRY.values()]


async def execute_tool(name: str, args: Dict[str, Any]) -> Any:
    """Execute a registered capability by name.

    Unknown keyword arguments are dropped unless the function accepts
    ``**kwargs``, so extracted parameters can carry extra context safely.

    Args:
        name: Capability name
        args: Arguments to pass to the capability

    Returns:
        Capability return value

    Raises:
        KeyError: If capability not found
        Exception: Any exception from capability execution
    """
    entry = _TOOL_REGISTRY.get(name)
    if entry is None:
        raise KeyError(f"Unknown tool: {name}")

    sig = inspect.signature(entry.func)
    accepts_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())
    if not accepts_kwargs:
        args = {k: v for k, v in args.items() if k in sig.parameters}

    if entry.is_async:
        return await entry.func(**args)
    return entry.func(**args)
