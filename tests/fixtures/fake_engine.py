"""Scripted stand-in for the engine's cli-server mode.

Reads NUL-terminated JSON argument arrays from stdin and answers each one
on stdout followed by a NUL byte, like the real engine. Besides a subset of
the real ``resolve``/``version`` commands it understands a few ``test-*``
commands that let tests provoke crashes, hangs and bad output.

Environment:
    FAKE_ENGINE_VERSION  version reported by ``version`` (default 2.4.0)
"""

from __future__ import annotations

import json
import os
import re
import sys
import time
from pathlib import Path

DIST = Path(os.environ.get("FAKE_ENGINE_DIST", "/opt/fake-codeql"))
LANGUAGES = ["cpp", "csharp", "go", "java", "javascript", "python"]
IMPORT_PATTERN = re.compile(r"^\s*import\s+([A-Za-z_][A-Za-z0-9_]*)", re.MULTILINE)
HEAP_FLAG_PATTERN = re.compile(r"^(-J-Xmx\d+M|--off-heap-ram=\d+)$")

STATE = {"count": 0}


def read_request(stdin):
    data = bytearray()
    while True:
        byte = stdin.read(1)
        if not byte:
            return None if not data else bytes(data)
        if byte == b"\0":
            return bytes(data)
        data.extend(byte)


def reply(text: str) -> None:
    sys.stdout.buffer.write(text.encode("utf-8") + b"\0")
    sys.stdout.buffer.flush()


def reply_json(value) -> None:
    reply(json.dumps(value))


def fail(message: str) -> None:
    sys.stderr.write(f"A fatal error occurred: {message}\n")
    sys.stderr.flush()
    reply("")


def option(args, name):
    for index, arg in enumerate(args):
        if arg == name and index + 1 < len(args):
            return args[index + 1]
        if arg.startswith(name + "="):
            return arg.split("=", 1)[1]
    return None


def positional(args):
    result = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg in ("--additional-packs", "--query", "--search-path"):
            skip = True
            continue
        if arg.startswith("-"):
            continue
        result.append(arg)
    return result


def search_roots(args):
    packs = option(args, "--additional-packs")
    return [Path(p) for p in packs.split(os.pathsep) if p] if packs else []


def query_languages(query: Path):
    text = query.read_text(encoding="utf-8")
    return sorted({m for m in IMPORT_PATTERN.findall(text) if m in LANGUAGES})


def resolve(args):
    kind, rest = args[0], args[1:]
    if kind == "qlpacks":
        packs = {}
        for root in search_roots(rest):
            for qlpack in sorted(root.rglob("qlpack.yml")):
                match = re.search(r"^name:\s*(\S+)", qlpack.read_text(encoding="utf-8"), re.MULTILINE)
                if match:
                    packs.setdefault(match.group(1), []).append(str(qlpack.parent))
        reply_json(packs)
    elif kind == "languages":
        reply_json({language: [str(DIST / language)] for language in LANGUAGES})
    elif kind == "queries":
        files = positional(rest)
        if not files:
            fail("no queries given")
            return
        result = {"byLanguage": {}, "noDeclaredLanguage": {}, "multipleDeclaredLanguages": {}}
        for name in files:
            query = Path(name)
            if not query.exists():
                fail(f"{query} does not exist")
                return
            languages = query_languages(query)
            key = str(query.resolve())
            if not languages:
                result["noDeclaredLanguage"][key] = {}
            elif len(languages) > 1:
                result["multipleDeclaredLanguages"][key] = {}
            else:
                result["byLanguage"].setdefault(languages[0], {})[key] = {}
        reply_json(result)
    elif kind == "library-path":
        query = Path(option(rest, "--query") or "")
        if not query.is_file():
            fail(f"{query} is not a query file")
            return
        languages = query_languages(query) or ["javascript"]
        reply_json({
            "libraryPath": [str(DIST / languages[0] / "ql" / "src")],
            "dbscheme": str(DIST / languages[0] / f"semmlecode.{languages[0]}.dbscheme"),
            "relativeName": query.name,
        })
    elif kind == "database":
        database = Path(positional(rest)[0])
        reply_json({
            "sourceLocationPrefix": str(database / "src"),
            "columnKind": "utf16",
            "unicodeNewlines": False,
            "sourceArchiveZip": str(database / "src.zip"),
            "datasetFolder": str(database / "db-javascript"),
            "logsFolder": str(database / "log"),
            "languages": ["javascript"],
        })
    else:
        fail(f"unknown resolve command {kind}")


def handle(args) -> bool:
    """Answer one request. Returns False when the server should exit."""
    STATE["count"] += 1
    command = [arg for arg in args if not HEAP_FLAG_PATTERN.match(arg)]
    name, rest = command[0], command[1:]

    if name == "shutdown":
        return False
    if name == "version":
        reply_json({
            "productName": "CodeQL",
            "vendor": "GitHub",
            "version": os.environ.get("FAKE_ENGINE_VERSION", "2.4.0"),
        })
    elif name == "resolve" and rest:
        resolve(rest)
    elif name == "test-echo":
        reply_json({"args": args, "pid": os.getpid()})
    elif name == "test-argv":
        reply_json(sys.argv[1:])
    elif name == "test-count":
        reply_json(STATE["count"])
    elif name == "test-sleep":
        time.sleep(float(rest[0]))
        reply_json({"slept": float(rest[0]), "token": rest[1] if len(rest) > 1 else None})
    elif name == "test-crash":
        sys.stderr.write("Simulated engine crash\n")
        sys.stderr.flush()
        os._exit(3)
    elif name == "test-partial":
        sys.stdout.buffer.write(b'{"incomplete": ')
        sys.stdout.buffer.flush()
        os._exit(4)
    elif name == "test-hang":
        time.sleep(3600)
    elif name == "test-garbage":
        reply("this is not json")
    elif name == "test-binary":
        sys.stdout.buffer.write(b"\xff\xfe\xfd\0")
        sys.stdout.buffer.flush()
    elif name == "test-raw":
        reply(rest[0])
    elif name == "test-ignore-shutdown":
        STATE["ignore_shutdown"] = True
        reply_json(True)
    else:
        fail(f"unknown command {' '.join(command)}")
    return True


def main() -> int:
    stdin = sys.stdin.buffer
    while True:
        request = read_request(stdin)
        if request is None:
            if STATE.get("ignore_shutdown"):
                time.sleep(3600)
            return 0
        args = json.loads(request.decode("utf-8"))
        if not handle(args):
            if STATE.get("ignore_shutdown"):
                time.sleep(3600)
            return 0


if __name__ == "__main__":
    sys.exit(main())
