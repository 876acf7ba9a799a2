import json
from concurrent.futures import ThreadPoolExecutor

from analyzer import Analyzer
from ast_nodes import Format, Loop
from errors import InputgenError
from generator import InputPart, UniversalGenerator, is_query_record
from config import load_config
from lexer import Lexer
from matcher import Matcher
from parser import Parser
from type_inference import VarType, TypeInferencer, annotate, collapse_loops
from variable_extractor import extract_variables


class Problem:
    """Everything the pipeline needs to know about one task."""

    def __init__(self, formats, samples, multiple_cases=False, query=None):
        self.formats = list(formats)
        self.samples = list(samples)    # [{"input": ..., "output": ...}] or bare strings
        self.multiple_cases = multiple_cases
        self.query = query              # None: decide from the number of formats

    @property
    def sample_inputs(self):
        inputs = []
        for s in self.samples:
            text = s["input"] if isinstance(s, dict) else s
            if self.multiple_cases:
                text = strip_first_line(text)
            inputs.append(text)
        return inputs

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise InputgenError("problem must be a JSON object")
        formats = data.get("formats")
        if formats is None and "format" in data:
            formats = [data["format"]]
        if not formats or not all(isinstance(f, str) for f in formats):
            raise InputgenError("problem needs a non-empty 'formats' list of strings")
        samples = data.get("samples", [])
        for s in samples:
            if isinstance(s, dict) and not isinstance(s.get("input"), str):
                raise InputgenError("every sample needs an 'input' string")
        return cls(formats, samples, bool(data.get("multiple_cases", False)), data.get("query"))

    @classmethod
    def load(cls, path):
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def strip_first_line(text: str) -> str:
    # the leading test-case count in multiple-case inputs
    _, _, rest = text.partition("\n")
    return rest


def trace_line(enabled, stage, message):
    if enabled:
        print(f"TRACE {stage}: {message}")


def strip_query_records(tree: Format) -> Format:
    return Format([c for c in tree.children if not is_query_record(c)])


# ---------- ONE FORMAT ----------
def analyze_format(text: str, trace=False):
    """Lex, parse and normalize one format string."""
    lexer = Lexer(text)
    if trace:
        trace_line(trace, "lex", " ".join(t.type for t in Lexer(text).tokenize()))

    result = Parser(lexer).parse()
    for d in result.diagnostics:
        trace_line(trace, "parse", d.format())
    trace_line(trace, "parse", f"{len(result.tree.children)} statements, literals {result.literals}")

    tree = Analyzer().analyze(result.tree)
    trace_line(trace, "analyze", repr(tree.children))
    return tree, result


def process_format(text: str, instances, trace=False) -> InputPart:
    tree, result = analyze_format(text, trace)

    inferred = TypeInferencer(trace=trace).infer(tree, instances)
    variables = extract_variables(tree, inferred.types, inferred.collapsed)
    trace_line(trace, "extract", repr(variables))

    return InputPart(variables, annotate(inferred.tree, inferred.types), result.literals, result.diagnostics)


def process_setup(text: str, instances, trace=False):
    """The first part of a query format.

    Samples are matched without the query records; the returned token counts
    say where each sample's query records begin.
    """
    tree, result = analyze_format(text, trace)
    matched = strip_query_records(tree)

    inferred = TypeInferencer(trace=trace).infer(matched, instances)
    consumed = []
    for instance in instances:
        m = Matcher(inferred.tree, instance)
        m.run()
        consumed.append(m.consumed)

    gen_tree = tree
    if inferred.collapsed:
        gen_tree, _ = collapse_loops(tree)

    types = dict(inferred.types)
    for node in tree.children:
        if is_query_record(node):
            for name in query_names(node):
                types[name] = VarType.QUERY

    variables = extract_variables(tree, types, inferred.collapsed)
    trace_line(trace, "extract", repr(variables))
    return InputPart(variables, annotate(gen_tree, types), result.literals, result.diagnostics), consumed


def query_names(node):
    if isinstance(node, Loop):
        names = []
        for child in node.body:
            names.extend(query_names(child))
        return names
    return [node.name]


# ---------- QUERY SAMPLES ----------
def remaining_lines(text: str, consumed: int):
    """Lines of text after the first `consumed` whitespace-separated tokens."""
    lines = text.splitlines()
    seen = 0
    for n, line in enumerate(lines):
        if seen >= consumed:
            return lines[n:]
        seen += len(line.split())
    return []


def split_query_samples(texts, consumed, values):
    """Group query records by discriminator: {value: [record without its first token]}."""
    keys = [str(v) for v in values]
    groups = {key: [] for key in keys}
    for text, count in zip(texts, consumed):
        for line in remaining_lines(text, count):
            tokens = line.split()
            if not tokens:
                continue
            if tokens[0] in groups:
                groups[tokens[0]].append(" ".join(tokens[1:]))
    return groups


def discriminator_values(formats):
    values = []
    for p, text in enumerate(formats[1:], start=1):
        result = Parser(Lexer(text)).parse()
        values.append(result.literals[0] if result.literals else p)
    return values


def process_parts(formats, instances, trace=False, max_workers=None, query=None):
    """Run every format of a problem; more than one format is a query problem."""
    if len(formats) == 1 and not query:
        return [process_format(formats[0], instances, trace)]

    setup, consumed = process_setup(formats[0], instances, trace)
    values = discriminator_values(formats)
    groups = split_query_samples(instances, consumed, values)
    for value in values:
        trace_line(trace, "query", f"{len(groups[str(value)])} records for {value}")

    jobs = [(text, groups[str(value)]) for text, value in zip(formats[1:], values)]
    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(process_format, text, records, trace) for text, records in jobs]
            rest = [f.result() for f in futures]
    else:
        rest = [process_format(text, records, trace) for text, records in jobs]
    return [setup] + rest


def generate(problem: Problem, config=None, trace=False, max_workers=None):
    if config is None:
        config = load_config()
    parts = process_parts(problem.formats, problem.sample_inputs, trace, max_workers, problem.query)
    ctx = UniversalGenerator(config).generate(parts, multiple_cases=problem.multiple_cases, query=problem.query)
    trace_line(trace, "generate", f"prediction_success={ctx.prediction_success}")
    return ctx
