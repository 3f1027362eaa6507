#!/usr/bin/env python3
"""
Worker process hosting one V8 isolate for a single script run.

The parent session talks to this process over stdin/stdout, one JSON object
per line (see ``script_runner.sandbox.protocol``):

1. read WorkerConfig, build the context, apply heap limits, answer ``ready``
2. read ScriptMessage, evaluate it once
3. report ``heap_limit`` as soon as the engine flags heap pressure
4. report exactly one ``result`` and exit

Isolation comes from the engine itself (no host functions are exposed to the
script) plus the process boundary: the parent can kill this process at any
point, and a fatal engine error only takes this process down.
"""
import json
import os
import re
import secrets
import sys
import threading
from typing import Callable, TextIO

from py_mini_racer import (
    JSEvalException,
    JSOOMException,
    JSParseException,
    JSTimeoutException,
    MiniRacer,
    init_mini_racer,
)

from script_runner.sandbox.protocol import (
    HeapLimitMessage,
    ReadyMessage,
    ResultMessage,
    ScriptMessage,
    WorkerConfig,
    write_message,
)

_engine_lock = threading.Lock()
_engine_ready = False

# Runs the script twice through an indirect eval. The first pass places a
# throw of a one-off token right after the directive prologue, so the source
# is fully parsed (in strict mode when it asks for it) but none of it
# executes: anything other than the token coming back is a compile error.
# Builtins are captured before user code can replace them, and verdicts are
# null-prototype objects so no script-defined toJSON can rewrite them.
RUNNER_TEMPLATE = """
(function () {
  var source = %(source)s;
  var parseOnly = %(parse_only)s;
  var token = %(token)s;
  var run = eval;
  var toText = String;
  var stringify = JSON.stringify;
  var describe = Object.prototype.toString;
  var apply = Reflect.apply;
  function render(value) {
    try {
      return toText(value);
    } catch (err) {
      return apply(describe, value, []);
    }
  }
  function verdict(kind, text) {
    return stringify({__proto__: null, kind: kind, text: text});
  }
  try {
    run(parseOnly);
  } catch (err) {
    if (err !== token) {
      return verdict("compile_error", "Uncaught " + render(err));
    }
  }
  var value;
  try {
    value = run(source);
  } catch (err) {
    return verdict("thrown", "Uncaught " + render(err));
  }
  try {
    return verdict("value", toText(value));
  } catch (err) {
    return verdict("thrown", "Uncaught " + render(err));
  }
})()
"""

_SKIP = re.compile(r"(?:\s+|//[^\n\r\u2028\u2029]*|/\*.*?\*/)*", re.S)
_STRING_LITERAL = re.compile(r""""(?:[^"\\\n\r]|\\.)*"|'(?:[^'\\\n\r]|\\.)*'""", re.S)
_LINE_BREAK = re.compile(r"[\n\r\u2028\u2029]")
# Tokens that continue an expression across a line break, so no semicolon
# is inserted after the preceding string literal.
_CONTINUATION = re.compile(r"[.(\[+\-*/%,?:=<>&|^!~`]|(?:in|instanceof)\b")


def ensure_engine() -> None:
    """Initialize the V8 platform for this process exactly once."""
    global _engine_ready
    with _engine_lock:
        if _engine_ready:
            return
        init_mini_racer(ignore_duplicate_init=True)
        _engine_ready = True


def split_directive_prologue(source: str) -> tuple[str, str]:
    """Split ``source`` into its directive prologue and the rest.

    The prologue is the run of leading string-literal statements (such as
    ``"use strict";``) together with the comments around them.
    """
    end = 0
    pos = 0
    while True:
        literal = _STRING_LITERAL.match(source, _SKIP.match(source, pos).end())
        if literal is None:
            break
        following = _SKIP.match(source, literal.end()).end()
        if source.startswith(";", following):
            end = pos = following + 1
        elif following == len(source) or (
            _LINE_BREAK.search(source, literal.end(), following)
            and not _CONTINUATION.match(source, following)
        ):
            end = pos = literal.end()
        else:
            break
    return source[:end], source[end:]


def build_runner(script: str) -> str:
    token = json.dumps("halt:" + secrets.token_hex(8))
    prologue, body = split_directive_prologue(script)
    return RUNNER_TEMPLATE % {
        "source": json.dumps(script),
        "parse_only": json.dumps(f"{prologue}\n;throw {token};\n{body}"),
        "token": token,
    }


def evaluate(ctx: MiniRacer, script: str) -> ResultMessage:
    try:
        rendered = ctx.eval(build_runner(script))
    except JSOOMException:
        return ResultMessage(kind="unknown", text="execution terminated: out of memory")
    except JSTimeoutException:
        return ResultMessage(kind="unknown", text="execution terminated: timeout")
    except JSParseException as e:
        return ResultMessage(kind="compile_error", text=str(e))
    except JSEvalException as e:
        return ResultMessage(kind="thrown", text=str(e))

    if not isinstance(rendered, str):
        return ResultMessage(kind="unknown", text="runner produced no result")
    try:
        data = json.loads(rendered)
        return ResultMessage(kind=data["kind"], text=data["text"])
    except (ValueError, KeyError, TypeError):
        return ResultMessage(kind="unknown", text="runner produced a malformed result")


class _Emitter:
    """Serializes writes to stdout from the main and poller threads."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._lock = threading.Lock()
        self.heap_reported = False

    def send(self, message) -> None:
        with self._lock:
            write_message(self._stream, message)

    def report_heap(self, soft_limit: int, hard_reached: bool) -> None:
        with self._lock:
            if self.heap_reported:
                return
            self.heap_reported = True
            write_message(
                self._stream,
                HeapLimitMessage(soft_limit_bytes=soft_limit, hard_limit_reached=hard_reached),
            )


def watch_heap(
    soft_limit_reached: Callable[[], bool],
    report: Callable[[], None],
    stop: threading.Event,
    interval: float,
) -> None:
    while not stop.wait(interval):
        if soft_limit_reached():
            report()
            return


def _read_line(stream: TextIO) -> str:
    line = stream.readline()
    if not line:
        raise EOFError("parent closed the pipe")
    return line


def main() -> int:
    try:
        config = WorkerConfig.model_validate_json(_read_line(sys.stdin))
    except (EOFError, ValueError) as e:
        print(f"Error: invalid worker config: {e}", file=sys.stderr)
        return 2

    ensure_engine()
    ctx = MiniRacer()
    ctx.set_soft_memory_limit(config.max_heap_bytes)
    ctx.set_hard_memory_limit(config.hard_heap_bytes)

    emitter = _Emitter(sys.stdout)
    emitter.send(ReadyMessage(pid=os.getpid()))

    try:
        request = ScriptMessage.model_validate_json(_read_line(sys.stdin))
    except (EOFError, ValueError) as e:
        print(f"Error: invalid script message: {e}", file=sys.stderr)
        return 2

    def report() -> None:
        emitter.report_heap(config.max_heap_bytes, ctx.was_hard_memory_limit_reached())

    stop = threading.Event()
    poller = threading.Thread(
        target=watch_heap,
        args=(ctx.was_soft_memory_limit_reached, report, stop, config.poll_interval),
        name="heap-poller",
        daemon=True,
    )
    poller.start()
    try:
        result = evaluate(ctx, request.script)
    finally:
        stop.set()
        poller.join()

    if ctx.was_soft_memory_limit_reached() or ctx.was_hard_memory_limit_reached():
        report()
    emitter.send(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
