import copy
import json
import re

from errors import ConfigError

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

SCALAR_KEYS = ("int", "float", "str")
SEQ_KEYS = ("seq", "2d_seq")

# role -> keys every configuration must provide
REQUIRED = {
    "loop": ("header", "footer"),
    "type": SCALAR_KEYS,
    "default": SCALAR_KEYS,
    "declare": SCALAR_KEYS + SEQ_KEYS,
    "input": SCALAR_KEYS,
    "arg": SCALAR_KEYS + SEQ_KEYS,
    "actual_arg": SEQ_KEYS,
    "access": SEQ_KEYS,
    "allocate": SEQ_KEYS,
    "declare_and_allocate": SEQ_KEYS,
}

QUERY_KEYS = ("loop", "footer", "branch", "else_branch", "branch_footer", "call", "actual_arg")

DEFAULT_CONFIG = {
    "base_indent": 4,
    "insert_space_around_operators": True,
    "comment": "// {text}",
    "loop": {
        "header": "for(int {loop_var} = 0 ; {loop_var} < {length} ; {loop_var}++){",
        "footer": "}",
    },
    "type": {
        "int": "long long",
        "float": "long double",
        "str": "std::string",
    },
    "default": {
        "int": "0",
        "float": "0.0",
        "str": "\"\"",
    },
    "declare": {
        "int": "long long {name};",
        "float": "long double {name};",
        "str": "std::string {name};",
        "seq": "std::vector<{type}> {name};",
        "2d_seq": "std::vector<std::vector<{type}>> {name};",
    },
    "input": {
        "int": "std::cin >> {name};",
        "float": "std::cin >> {name};",
        "str": "std::cin >> {name};",
    },
    "arg": {
        "int": "long long {name}",
        "float": "long double {name}",
        "str": "std::string {name}",
        "seq": "std::vector<{type}> {name}",
        "2d_seq": "std::vector<std::vector<{type}>> {name}",
    },
    "actual_arg": {
        "seq": "std::move({name})",
        "2d_seq": "std::move({name})",
    },
    "access": {
        "seq": "{name}[{index}]",
        "2d_seq": "{name}[{index_i}][{index_j}]",
    },
    "allocate": {
        "seq": "{name}.assign({length}, {default});",
        "2d_seq": "{name}.assign({length_i}, std::vector<{type}>({length_j}, {default}));",
    },
    "declare_and_allocate": {
        "seq": "std::vector<{type}> {name}({length});",
        "2d_seq": "std::vector<std::vector<{type}>> {name}({length_i}, std::vector<{type}>({length_j}));",
    },
    "query": {
        "loop": "for(int {loop_var} = 0 ; {loop_var} < {count} ; {loop_var}++){",
        "footer": "}",
        "branch": "if({var} == {value}){",
        "else_branch": "} else if({var} == {value}){",
        "branch_footer": "}",
        "call": "solve_{value}({arguments});",
        # arguments of the call inside the dispatch loop; runs once per query
        "actual_arg": "{name}",
    },
}


def render(template: str, params: dict) -> str:
    """Substitute {name} placeholders; unknown ones stay as written."""

    def repl(m):
        key = m.group(1)
        if key in params and params[key] is not None:
            return str(params[key])
        return m.group(0)

    return PLACEHOLDER_RE.sub(repl, template)


class CodeGeneratorConfig:
    def __init__(self, data: dict, path: str | None = None):
        self.path = path
        self.data = data
        self.validate()

        self.base_indent = data["base_indent"]
        self.insert_space_around_operators = bool(data.get("insert_space_around_operators", True))
        self.comment = data.get("comment", "// {text}")
        self.query = data.get("query") or {}

    def validate(self):
        data = self.data
        if not isinstance(data, dict):
            raise ConfigError("configuration must be an object", self.path)
        indent = data.get("base_indent")
        if not isinstance(indent, int) or isinstance(indent, bool) or indent < 0:
            raise ConfigError("base_indent must be a non-negative integer", self.path)

        for role, keys in REQUIRED.items():
            table = data.get(role)
            if not isinstance(table, dict):
                raise ConfigError(f"missing section '{role}'", self.path)
            for key in keys:
                if not isinstance(table.get(key), str):
                    raise ConfigError(f"'{role}.{key}' must be a string template", self.path)

        query = data.get("query")
        if query is not None:
            if not isinstance(query, dict):
                raise ConfigError("'query' must be an object", self.path)
            for key in QUERY_KEYS:
                if key in query and not isinstance(query[key], str):
                    raise ConfigError(f"'query.{key}' must be a string template", self.path)

    def template(self, role: str, key: str) -> str:
        return self.data[role][key]


def merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | None = None) -> CodeGeneratorConfig:
    if path is None:
        return CodeGeneratorConfig(copy.deepcopy(DEFAULT_CONFIG))

    try:
        with open(path, "r", encoding="utf-8") as f:
            override = json.load(f)
    except FileNotFoundError:
        raise ConfigError("file not found", path) from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON ({e.msg} at line {e.lineno}, col {e.colno})", path) from None

    if not isinstance(override, dict):
        raise ConfigError("configuration must be an object", path)
    return CodeGeneratorConfig(merge(DEFAULT_CONFIG, override), path)
