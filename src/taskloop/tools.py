# tools.py
# Built-in tool implementations.
#
# The orchestrator treats these as opaque capabilities: a name, a schema
# and an executor taking (input, ToolContext). Bookkeeping tools write to
# working memory; the rest touch the outside world and sit behind the
# permission gate.

import asyncio
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from taskloop.events import EventType
from taskloop.models import ToolSchema
from taskloop.registry import Tool, ToolContext

SEARCH_MAX_RESULTS = 5
HTTP_TIMEOUT_SECONDS = 10


def _schema(name: str, description: str, properties: dict[str, Any], required: list[str]) -> ToolSchema:
    return ToolSchema(
        name=name,
        description=description,
        input_schema={"type": "object", "properties": properties, "required": required},
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def _search(query: str) -> list[dict[str, Any]]:
    from ddgs import DDGS

    # Coerce the generator to a list to ensure actual execution
    return list(DDGS().text(query, max_results=SEARCH_MAX_RESULTS))


async def _web_search(args: dict, ctx: ToolContext) -> dict:
    query = str(args.get("query", "")).strip()
    if not query:
        return {"error": "no query provided"}

    hits = await asyncio.to_thread(_search, query)
    results = [
        {
            "title": hit.get("title", "No Title"),
            "snippet": hit.get("body", ""),
            "url": hit.get("href", ""),
            "source": urlparse(hit.get("href", "")).hostname or "",
        }
        for hit in hits
    ]
    return {"query": query, "results": results, "result_count": len(results)}


# ---------------------------------------------------------------------------
# Bookkeeping (safe, never prompts for approval)
# ---------------------------------------------------------------------------


async def _save_note(args: dict, ctx: ToolContext) -> dict:
    note = {"content": args["content"], "category": args["category"], "timestamp": time.time()}
    notes = ctx.memory.update("notes", lambda current: [*(current or []), note])
    ctx.emit(EventType.NOTE_SAVED, {"note": note, "total_notes": len(notes)})
    return {"success": True, "note_count": len(notes), "category": note["category"]}


async def _think(args: dict, ctx: ToolContext) -> dict:
    entry = {"thought": args["thought"], "timestamp": time.time()}
    thoughts = ctx.memory.update("thoughts", lambda current: [*(current or []), entry])
    ctx.emit(EventType.THOUGHT_RECORDED, {"thought": entry, "total_thoughts": len(thoughts)})
    return {"success": True, "thought_count": len(thoughts)}


async def _store_result(args: dict, ctx: ToolContext) -> dict:
    key = args["key"]
    results = ctx.memory.update("results", lambda current: {**(current or {}), key: args["value"]})
    ctx.emit(EventType.RESULT_STORED, {"key": key, "result_count": len(results)})
    return {"success": True, "key": key, "result_count": len(results)}


async def _complete_task(args: dict, ctx: ToolContext) -> dict:
    ctx.memory.set("final_answer", args["answer"])
    ctx.memory.set("completion_summary", args["summary"])
    ctx.emit(EventType.TASK_COMPLETED, {"answer": args["answer"], "summary": args["summary"]})
    return {"success": True, "complete": True, "summary": args["summary"]}


# ---------------------------------------------------------------------------
# Side-effecting
# ---------------------------------------------------------------------------


def _read_file(args: dict, ctx: ToolContext) -> dict:
    path = Path(args["filepath"]).expanduser().resolve()
    if not path.is_file():
        return {"success": False, "error": f"File not found: {path}"}
    return {
        "success": True,
        "filepath": str(path),
        "content": path.read_text(encoding="utf-8"),
        "size": path.stat().st_size,
    }


def _write_file(args: dict, ctx: ToolContext) -> dict:
    path = Path(args["filepath"]).expanduser().resolve()
    content = str(args.get("content", ""))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return {"success": True, "filepath": str(path), "bytes": len(content.encode("utf-8"))}


def _list_files(args: dict, ctx: ToolContext) -> dict:
    path = Path(args.get("dirpath") or ".").expanduser().resolve()
    if not path.exists():
        return {"success": False, "error": f"Directory not found: {path}"}
    if not path.is_dir():
        return {"success": False, "error": f"Not a directory: {path}"}

    entries = []
    for entry in sorted(path.iterdir()):
        stat = entry.stat()
        entries.append({
            "name": entry.name,
            "type": "directory" if entry.is_dir() else "file",
            "size": stat.st_size if entry.is_file() else None,
            "modified_at": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
        })
    return {"success": True, "path": str(path), "entries": entries, "count": len(entries)}


def _delete_file(args: dict, ctx: ToolContext) -> dict:
    path = Path(args["filepath"]).expanduser().resolve()
    if not path.exists():
        return {"success": False, "error": f"File not found: {path}"}

    if path.is_dir():
        contents = list(path.iterdir())
        if contents:
            return {
                "success": False,
                "error": f"Directory is not empty: {path}. Contains {len(contents)} items.",
            }
        path.rmdir()
        kind = "directory"
    else:
        path.unlink()
        kind = "file"
    return {"success": True, "filepath": str(path), "type": kind}


async def _http_post(args: dict, ctx: ToolContext) -> dict:
    url = str(args.get("url", "")).strip()
    if not url:
        return {"error": "no URL provided"}
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        response = await client.post(url, json=args.get("payload") or {})
    return {"url": url, "status_code": response.status_code, "bytes": len(response.content)}


# ---------------------------------------------------------------------------
# Registry entries
# ---------------------------------------------------------------------------

WEB_SEARCH = Tool(
    name="web_search",
    schema=_schema(
        "web_search",
        "Search the web for information on a topic. Use this to research facts, "
        "find examples, or get current data.",
        {"query": {"type": "string", "description": "The search query"}},
        ["query"],
    ),
    execute=_web_search,
)

SAVE_NOTE = Tool(
    name="save_note",
    schema=_schema(
        "save_note",
        "Store a note capturing research, decisions, or findings discovered during the task.",
        {
            "content": {"type": "string", "description": "The information to save"},
            "category": {
                "type": "string",
                "description": "Category tag, e.g. 'research', 'decision', 'finding'",
            },
        },
        ["content", "category"],
    ),
    execute=_save_note,
)

THINK = Tool(
    name="think",
    schema=_schema(
        "think",
        "Record your reasoning or analysis before taking action.",
        {"thought": {"type": "string", "description": "Your reasoning or analysis"}},
        ["thought"],
    ),
    execute=_think,
)

STORE_RESULT = Tool(
    name="store_result",
    schema=_schema(
        "store_result",
        "Store an intermediate or final result under a key for later steps.",
        {
            "key": {"type": "string", "description": "Key for the result, e.g. 'summary'"},
            "value": {"type": "string", "description": "The result value"},
        },
        ["key", "value"],
    ),
    execute=_store_result,
)

COMPLETE_TASK = Tool(
    name="complete_task",
    schema=_schema(
        "complete_task",
        "Mark the task as complete and provide the final answer. Use this when all "
        "required work is finished.",
        {
            "answer": {"type": "string", "description": "The final answer or result"},
            "summary": {"type": "string", "description": "A brief summary of what was accomplished"},
        },
        ["answer", "summary"],
    ),
    execute=_complete_task,
)

READ_FILE = Tool(
    name="read_file",
    schema=_schema(
        "read_file",
        "Read the contents of a text file.",
        {"filepath": {"type": "string", "description": "Path to the file"}},
        ["filepath"],
    ),
    execute=_read_file,
)

WRITE_FILE = Tool(
    name="write_file",
    schema=_schema(
        "write_file",
        "Write text content to a file, creating parent directories as needed.",
        {
            "filepath": {"type": "string", "description": "Path to the file"},
            "content": {"type": "string", "description": "Content to write"},
        },
        ["filepath", "content"],
    ),
    execute=_write_file,
)

LIST_FILES = Tool(
    name="list_files",
    schema=_schema(
        "list_files",
        "List files and directories in a path with their types and sizes.",
        {"dirpath": {"type": "string", "description": "Directory to list; defaults to the current one"}},
        [],
    ),
    execute=_list_files,
)

DELETE_FILE = Tool(
    name="delete_file",
    schema=_schema(
        "delete_file",
        "Delete a file or an empty directory. Non-empty directories are refused.",
        {"filepath": {"type": "string", "description": "Path to the file or empty directory"}},
        ["filepath"],
    ),
    execute=_delete_file,
)

HTTP_POST = Tool(
    name="http_post",
    schema=_schema(
        "http_post",
        "POST a JSON payload to a URL.",
        {
            "url": {"type": "string", "description": "Destination URL"},
            "payload": {"type": "object", "description": "JSON body"},
        },
        ["url"],
    ),
    execute=_http_post,
)

GENERAL_TOOLS: list[Tool] = [WEB_SEARCH, SAVE_NOTE, THINK, STORE_RESULT, COMPLETE_TASK]
WORKSPACE_TOOLS: list[Tool] = [
    *GENERAL_TOOLS, READ_FILE, WRITE_FILE, LIST_FILES, DELETE_FILE, HTTP_POST,
]
