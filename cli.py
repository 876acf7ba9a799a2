import json
import sys
import traceback

from colorama import Fore, Style, just_fix_windows_console

from analyzer import Analyzer
from config import load_config
from lexer import Lexer
from matcher import match_format
from parser import Parser
from pipeline import Problem, analyze_format, generate
from type_inference import infer_types
from variable_extractor import extract_variables


# Simple AST printer (so you can SEE what the parser built)
def ast_to_dict(node):
    if node is None:
        return None

    t = node.__class__.__name__
    d = {"type": t}

    if t == "Format":
        d["children"] = [ast_to_dict(c) for c in node.children]
    elif t == "Item":
        d["name"] = node.name
        if node.indices:
            d["indices"] = [ast_to_dict(i) for i in node.indices]
        if node.var_type is not None:
            d["var_type"] = node.var_type.value
    elif t == "Number":
        d["value"] = node.value
    elif t == "BinOp":
        d["op"] = node.op
        d["left"] = ast_to_dict(node.left)
        d["right"] = ast_to_dict(node.right)
    elif t == "Loop":
        d["var"] = node.var
        d["start"] = ast_to_dict(node.start)
        d["end"] = ast_to_dict(node.end)
        d["body"] = [ast_to_dict(c) for c in node.body]
    elif t in ("Dots", "VDots", "Break"):
        pass
    else:
        d["raw"] = str(node)

    return d


def pretty(obj, indent=0):
    sp = "  " * indent
    if isinstance(obj, dict):
        lines = []
        for k, v in obj.items():
            if isinstance(v, (dict, list)):
                lines.append(f"{sp}{k}:")
                lines.append(pretty(v, indent + 1))
            else:
                lines.append(f"{sp}{k}: {v}")
        return "\n".join(lines)
    if isinstance(obj, list):
        lines = []
        for item in obj:
            lines.append(f"{sp}-")
            lines.append(pretty(item, indent + 1))
        return "\n".join(lines)
    return f"{sp}{obj}"


def heading(text):
    return f"{Style.BRIGHT}{Fore.CYAN}{text}{Style.RESET_ALL}"


def fail(label, e, debug):
    if debug:
        traceback.print_exc()
    else:
        print(f"{Fore.RED}{label}: {e}{Style.RESET_ALL}")
    sys.exit(1)


def print_diagnostics(diagnostics, indent=""):
    for d in diagnostics:
        color = Fore.RED if d.severity == "error" else Fore.YELLOW
        print(f"{color}{d.format(indent)}{Style.RESET_ALL}")


def read_text(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def cmd_tokens(path, debug=False):
    try:
        tokens = Lexer(read_text(path)).tokenize()
    except Exception as e:
        fail("Lex error", e, debug)

    for tok in tokens:
        print(f"  {tok}")


def cmd_parse(path, debug=False):
    try:
        result = Parser(Lexer(read_text(path))).parse()
    except Exception as e:
        fail("Parse error", e, debug)

    print(pretty(ast_to_dict(result.tree)))
    if result.literals:
        print(f"literals: {result.literals}")
    print_diagnostics(result.diagnostics)
    if not result.ok:
        sys.exit(1)


def cmd_analyze(path, debug=False):
    try:
        result = Parser(Lexer(read_text(path))).parse()
        tree = Analyzer().analyze(result.tree)
    except Exception as e:
        fail("Analyze error", e, debug)

    print(pretty(ast_to_dict(tree)))


def cmd_match(path, sample_path, debug=False):
    try:
        tree, _ = analyze_format(read_text(path))
        env = match_format(tree, read_text(sample_path))
    except Exception as e:
        fail("Match error", e, debug)

    for name, value in env.items():
        print(f"{name}: {value}")


def cmd_infer(path, sample_paths, debug=False, trace=False):
    try:
        tree, _ = analyze_format(read_text(path))
        inferred = infer_types(tree, [read_text(p) for p in sample_paths], trace=trace)
        variables = extract_variables(tree, inferred.types, inferred.collapsed)
    except Exception as e:
        fail("Inference error", e, debug)

    if inferred.collapsed:
        print(heading("COLLAPSED:"), ", ".join(sorted(inferred.collapsed)))
    print(heading("VARIABLES:"))
    for v in variables:
        sizes = ", ".join(repr(s) for s in v.sizes)
        print(f"  {v.name}  type={v.type.value}  dims={v.dims}  sizes=[{sizes}]")


def cmd_gen(path, config_path=None, debug=False, trace=False, as_json=False):
    try:
        problem = Problem.load(path)
        config = load_config(config_path)
        ctx = generate(problem, config, trace=trace)
    except Exception as e:
        fail("Generate error", e, debug)

    if as_json:
        print(json.dumps(ctx.to_dict(), indent=2, ensure_ascii=False))
        return

    if not ctx.prediction_success:
        print(f"{Fore.YELLOW}warning: some variables could not be resolved{Style.RESET_ALL}")
    if ctx.diagnostics:
        print(heading("DIAGNOSTICS:"))
        print_diagnostics(ctx.diagnostics, indent="  ")
    print(heading("INPUT:"))
    print(ctx.input_part)
    print(heading("\nFORMAL ARGUMENTS:"))
    print(f"  {ctx.formal_arguments}")
    print(heading("\nACTUAL ARGUMENTS:"))
    print(f"  {ctx.actual_arguments}")
    for case in ctx.query_cases:
        print(heading(f"\nQUERY {case.value}:"))
        print(f"  ({case.formal_arguments})")


def usage():
    print("Usage:")
    print("  python cli.py tokens <format.txt>")
    print("  python cli.py parse <format.txt>")
    print("  python cli.py analyze <format.txt>")
    print("  python cli.py match <format.txt> <sample.txt>")
    print("  python cli.py infer <format.txt> <sample.txt>...")
    print("  python cli.py gen <problem.json> [--config <config.json>] [--json]")
    print("  (optional) --debug to show Python traceback, --trace to print pipeline stages")
    sys.exit(1)


def take_flag(argv, flag):
    if flag in argv:
        argv.remove(flag)
        return True
    return False


def main():
    just_fix_windows_console()

    argv = sys.argv[1:]
    debug = take_flag(argv, "--debug")
    trace = take_flag(argv, "--trace")
    as_json = take_flag(argv, "--json")

    config_path = None
    if "--config" in argv:
        i = argv.index("--config")
        if i + 1 >= len(argv):
            usage()
        config_path = argv[i + 1]
        del argv[i : i + 2]

    if len(argv) < 2:
        usage()

    cmd = argv[0]
    path = argv[1]
    extra = argv[2:]

    if cmd in ("tokens", "parse", "analyze") and extra:
        print(f"{cmd} does not accept extra arguments.")
        sys.exit(1)

    if cmd == "tokens":
        cmd_tokens(path, debug=debug)
    elif cmd == "parse":
        cmd_parse(path, debug=debug)
    elif cmd == "analyze":
        cmd_analyze(path, debug=debug)
    elif cmd == "match":
        if len(extra) != 1:
            usage()
        cmd_match(path, extra[0], debug=debug)
    elif cmd == "infer":
        if not extra:
            usage()
        cmd_infer(path, extra, debug=debug, trace=trace)
    elif cmd == "gen":
        if extra:
            print("gen does not accept extra arguments.")
            sys.exit(1)
        cmd_gen(path, config_path, debug=debug, trace=trace, as_json=as_json)
    else:
        print(f"Unknown command: {cmd}")
        sys.exit(1)


if __name__ == "__main__":
    main()
