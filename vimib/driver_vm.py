import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from .lexer import Lexer, LexError
from .parser import Parser, ParseError
from .codegen_vm import CodeGenVM, CodegenError
from vimib_runtime.vm import VimibVM, VMRuntimeError

LOG = logging.getLogger("vimib.driver")


def compile_source(src_text: str) -> Tuple[bytes, List[str]]:
    """Lex, parse and compile source text into (code, constants)."""
    program = Parser(Lexer(src_text).tokenize()).parse()
    return CodeGenVM().generate(program)


def run_source(
    src_text: str,
    output_callback: Optional[Callable[[str], None]] = None,
    max_steps: Optional[int] = None,
):
    code, constants = compile_source(src_text)
    vm = VimibVM(code, constants, output_callback=output_callback)
    return vm.run(max_steps=max_steps)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="vimib bytecode compiler/executor")
    ap.add_argument("source", type=Path, help="Source file")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log compiler and VM activity")
    ap.add_argument("--max-steps", type=int, default=None, help="Stop after this many instructions")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )

    try:
        src_text = args.source.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Cannot read {args.source}: {e}", file=sys.stderr)
        return 1

    try:
        code, constants = compile_source(src_text)
    except (LexError, ParseError) as e:
        print(f"Syntax error at {args.source}:{e.line}:{e.col}: {e}", file=sys.stderr)
        return 1
    except CodegenError as e:
        where = f":{e.line}:{e.col}" if e.line is not None else ""
        print(f"Compile error in {args.source}{where}: {e}", file=sys.stderr)
        return 1

    LOG.debug("compiled %s", args.source)
    vm = VimibVM(code, constants)
    try:
        vm.run(max_steps=args.max_steps)
    except VMRuntimeError as e:
        print(f"Runtime error at offset {e.offset}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
