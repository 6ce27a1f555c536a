from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Sequence

from ..checklist.cache import TTLCache
from ..checklist.db import ChecklistDatabase
from ..checklist.extraction import ModelConfig, OpenAIChecklistModel
from ..checklist.service import ChecklistExtractionService, render_checklist_text, summarize_items
from ..client.facade import build_session_store
from ..config import load_settings
from ..errors import ChecklistError, NotFound
from ..logging import get_logger

LOG = get_logger("cli-main")


def _add_serve_cli(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    serve = subparsers.add_parser("serve", help="Run the chat-session and checklist HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8001)
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--static-dir", help="Serve a prebuilt frontend from this directory (relative to project root)")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..checklist.frontend import create_app
        import uvicorn

        app = create_app(
            root_dir=os.getcwd(),
            static_dir=ns.static_dir,
            allow_origins=ns.allow_origins,
            serve_static=bool(ns.static_dir),
        )
        uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
        return 0

    serve.set_defaults(handler=_serve)


def _add_extract_cli(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    extract = subparsers.add_parser("extract", help="Extract a checklist from order images and store it.")
    extract.add_argument("--image-url", action="append", dest="image_urls", required=True,
                         help="Public URL of an order image (repeatable)")
    extract.add_argument("--model", help="Override CHECKLIST_MODEL")

    def _extract(ns: argparse.Namespace) -> int:
        settings = load_settings(os.getcwd())
        config = ModelConfig.from_settings(settings)
        if ns.model:
            config = ModelConfig(
                api_key=config.api_key,
                model_name=ns.model,
                base_url=config.base_url,
                timeout_seconds=config.timeout_seconds,
            )
        model = OpenAIChecklistModel(config)
        try:
            db = ChecklistDatabase(root_dir=os.getcwd(), db_path=settings.db_path)
            svc = ChecklistExtractionService(model, TTLCache(), db)
            result = svc.extract(ns.image_urls)
        finally:
            model.close()
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        print(summarize_items(result.items))
        return 0

    extract.set_defaults(handler=_extract)


def _add_checklist_cli(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    checklist = subparsers.add_parser("checklist", help="Inspect stored checklists.")
    checklist_sub = checklist.add_subparsers(dest="checklist_cmd", required=True)

    show = checklist_sub.add_parser("show", help="Print a stored, unexpired checklist")
    show.add_argument("checklist_id")
    show.add_argument("--text", action="store_true", help="Print the plain-text export instead of JSON")

    def _show(ns: argparse.Namespace) -> int:
        settings = load_settings(os.getcwd())
        db = ChecklistDatabase(root_dir=os.getcwd(), db_path=settings.db_path)
        try:
            found = db.get_checklist(ns.checklist_id)
        except NotFound:
            LOG.error("Checklist %s not found or expired", ns.checklist_id)
            return 1
        if ns.text:
            print(render_checklist_text(found))
        else:
            print(json.dumps(found.to_dict(), ensure_ascii=False, indent=2))
        return 0

    show.set_defaults(handler=_show)


def _add_sessions_cli(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    sessions = subparsers.add_parser(
        "sessions",
        help="Manage chat sessions through the API, falling back to local storage.",
    )
    sessions_sub = sessions.add_subparsers(dest="sessions_cmd", required=True)
    sessions_sub.add_parser("list", help="List chat sessions")
    show = sessions_sub.add_parser("show", help="Print one chat session as JSON")
    show.add_argument("session_id")
    delete = sessions_sub.add_parser("delete", help="Delete one chat session")
    delete.add_argument("session_id")
    sessions_sub.add_parser("clear", help="Delete all chat sessions")

    def _sessions(ns: argparse.Namespace) -> int:
        store = build_session_store(load_settings(os.getcwd()), root_dir=os.getcwd())
        if ns.sessions_cmd == "list":
            served = store.list_sessions()
            LOG.info("Listed %d session(s) from %s store", len(served.value), served.source.value)
            for s in served.value:
                print(f"{s.id}\t{s.updated_at or '-'}\t{s.title}")
            return 0
        if ns.sessions_cmd == "show":
            served_one = store.get_session(ns.session_id)
            if served_one.value is None:
                LOG.error("Chat session %s not found (%s store)", ns.session_id, served_one.source.value)
                return 1
            print(json.dumps(served_one.value.to_dict(), ensure_ascii=False, indent=2))
            return 0
        if ns.sessions_cmd == "delete":
            served_none = store.delete_session(ns.session_id)
        else:
            served_none = store.clear_all()
        LOG.info("'%s' handled by %s store", ns.sessions_cmd, served_none.source.value)
        return 0

    sessions.set_defaults(handler=_sessions)


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="order-checklist",
        description="Extract order checklists from images and manage chat history.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_serve_cli(subparsers)
    _add_extract_cli(subparsers)
    _add_checklist_cli(subparsers)
    _add_sessions_cli(subparsers)

    args = parser.parse_args(provided)
    try:
        code = args.handler(args)
    except ChecklistError as exc:
        LOG.error(f"Subcommand '{args.command}' failed: {exc}")
        code = 1
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
