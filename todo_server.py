#!/usr/bin/env python3
"""
To-do List Server
-----------------
Serves the single-page client and a JSON API over the todolist package:
accounts, todos with AI annotations, subtasks, shared lists, image-based
task extraction and the insights dashboard.

Usage:
    python todo_server.py --port 3000
    python todo_server.py --config ./config.yaml --db /tmp/todolist.db

    # Or, once installed:
    todolist-server --host 0.0.0.0

Access:
    http://localhost:3000

API (all /api routes except /api/auth/* need an X-Session-Token header):
    POST /api/auth/signup | signin | signout
    GET/PUT /api/profile
    POST /api/session/activity      → { event: keystroke|focus|blur }
    GET/POST /api/todos             → list (?list_id=) / create (text, split, drafts)
    PUT/DELETE /api/todos/<id>
    GET/POST /api/todos/<id>/subtasks
    DELETE /api/todos/<id>/subtasks/<sid>
    POST /api/analyze | /api/split
    POST /api/vision/extract        → multipart "image" field
    POST /api/vision/parse          → { text }
    GET/DELETE /api/drafts          → pending extracted drafts
    GET/PUT /api/preferences
    GET /api/insights, /api/suggestions?q=
    GET/POST /api/lists, DELETE /api/lists/<id>
    POST /api/lists/<id>/members, DELETE /api/lists/<id>/members/<uid>
    /api/admin/users[/<email>], /api/admin/todos[/<uid>/<tid>]
"""

import argparse
import atexit
import logging
import sys
from functools import wraps
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from flask import Flask, abort, g, jsonify, request, send_from_directory

from todolist import __version__
from todolist.analysis import TextAnalyzer
from todolist.auth import AuthService, SessionCache, SessionManager
from todolist.config import Settings
from todolist.docstore import DocumentStore
from todolist.errors import (
    AuthError,
    AuthorizationError,
    ImageValidationError,
    LLMError,
    NotFoundError,
    OCRError,
    StoreError,
    ValidationError,
    VisionError,
)
from todolist.insights import build_insights, get_suggestions
from todolist.llm import ClaudeClient
from todolist.ocr import TesseractEngine
from todolist.presence import ProfileRefresher, TypingTracker
from todolist.schema import TodoDraft
from todolist.splitter import split_multiple_todos
from todolist.todos import TodoService, total_estimated_time
from todolist.vision import VisionExtractor, VisionPipeline

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Token"


def create_app(settings: Settings, llm=None, ocr=None) -> Flask:
    """
    Wire services from settings and register routes.

    `llm` and `ocr` default to a ClaudeClient and (when enabled) a
    TesseractEngine built from settings; tests inject fakes.
    """
    app = Flask(__name__, static_folder=None)

    store = DocumentStore(settings.db_path)
    if llm is None:
        llm = ClaudeClient(settings)
    if ocr is None and settings.ocr_enabled:
        ocr = TesseractEngine.from_settings(settings)

    analyzer = TextAnalyzer(llm)
    svc = SimpleNamespace(
        settings=settings,
        store=store,
        llm=llm,
        ocr=ocr,
        analyzer=analyzer,
        auth=AuthService(store, settings.admin_emails),
        todos=TodoService(store),
        sessions=SessionManager(),
        cache=SessionCache(settings.session_file),
        trackers={},
        vision=VisionPipeline(
            VisionExtractor.from_settings(settings, llm=llm, ocr=ocr),
            analyzer,
            max_image_bytes=settings.max_image_bytes,
            max_drafts=settings.max_drafts,
        ),
    )

    # ── Session user refresh ─────────────────────────────────────────────────

    def prune_trackers():
        """Drop typing trackers whose session token is gone."""
        for token in list(svc.trackers):
            if svc.sessions.resolve(token) is None:
                tracker = svc.trackers.pop(token, None)
                if tracker is not None:
                    tracker.dispose()

    def user_typing(email: str) -> bool:
        for token in svc.sessions.tokens_for(email):
            tracker = svc.trackers.get(token)
            if tracker is not None and tracker.is_typing:
                return True
        return False

    def cached_users_typing() -> bool:
        prune_trackers()
        users = svc.cache.users()
        return bool(users) and all(user_typing(u.email) for u in users)

    def refresh_cached_users():
        for cached in svc.cache.users():
            if user_typing(cached.email):
                logger.debug(f"Skipping refresh of {cached.email}: typing")
                continue
            fresh = svc.auth.get_user_by_email(cached.email)
            if fresh is None or not fresh.is_active:
                svc.cache.clear_user(cached.email)
                for token in svc.sessions.revoke_all(cached.email):
                    tracker = svc.trackers.pop(token, None)
                    if tracker is not None:
                        tracker.dispose()
            else:
                svc.cache.set_user(fresh)

    svc.refresher = ProfileRefresher(refresh_cached_users, cached_users_typing,
                                     settings.refresh_interval_secs)
    app.extensions["todolist"] = svc

    # ── Errors ───────────────────────────────────────────────────────────────

    @app.errorhandler(ValidationError)
    def on_validation_error(e: ValidationError):
        code = 422 if e.manual_entry else 400
        return jsonify({"error": str(e), "manual_entry": e.manual_entry}), code

    @app.errorhandler(AuthError)
    def on_auth_error(e):
        return jsonify({"error": str(e)}), 401

    @app.errorhandler(AuthorizationError)
    def on_authorization_error(e):
        return jsonify({"error": str(e)}), 403

    @app.errorhandler(NotFoundError)
    def on_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(StoreError)
    def on_store_error(e):
        return jsonify({"error": str(e)}), 500

    @app.errorhandler(ImageValidationError)
    def on_bad_image(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(VisionError)
    @app.errorhandler(OCRError)
    @app.errorhandler(LLMError)
    def on_upstream_error(e):
        return jsonify({"error": str(e), "manual_entry": True}), 502

    # ── Auth ─────────────────────────────────────────────────────────────────

    def require_session(f):
        """Decorator: resolve X-Session-Token to an active user in g.user."""
        @wraps(f)
        def decorated(*args, **kwargs):
            token = request.headers.get(SESSION_HEADER, "").strip()
            email = svc.sessions.resolve(token) if token else None
            if not email:
                return jsonify({"error": "Not signed in"}), 401
            user = svc.auth.get_user_by_email(email)
            if user is None or not user.is_active:
                svc.sessions.revoke(token)
                return jsonify({"error": "Session expired"}), 401
            g.user = user
            g.token = token
            return f(*args, **kwargs)
        return decorated

    def require_admin(f):
        @wraps(f)
        @require_session
        def decorated(*args, **kwargs):
            if not g.user.is_admin:
                return jsonify({"error": "Admin access required"}), 403
            return f(*args, **kwargs)
        return decorated

    def body() -> Dict[str, Any]:
        data = request.get_json(force=True, silent=True)
        return data if isinstance(data, dict) else {}

    def annotated(drafts: List[TodoDraft]) -> List[TodoDraft]:
        """Analyze drafts that were not analyzed client-side."""
        return [d if d.is_analyzed else TodoDraft(d.text, svc.analyzer.analyze(d.text))
                for d in drafts]

    @app.route("/api/auth/signup", methods=["POST"])
    def api_signup():
        data = body()
        user = svc.auth.sign_up(data.get("email", ""), data.get("password", ""),
                                data.get("name", ""))
        token = svc.sessions.issue(user)
        svc.trackers[token] = TypingTracker(settings.typing_debounce_secs)
        svc.cache.set_user(user)
        return jsonify({"token": token, "user": user.to_dict()}), 201

    @app.route("/api/auth/signin", methods=["POST"])
    def api_signin():
        data = body()
        user = svc.auth.sign_in(data.get("email", ""), data.get("password", ""))
        token = svc.sessions.issue(user)
        svc.trackers[token] = TypingTracker(settings.typing_debounce_secs)
        svc.cache.set_user(user)
        logger.info(f"Signed in {user.email}")
        return jsonify({"token": token, "user": user.to_dict()})

    @app.route("/api/auth/signout", methods=["POST"])
    @require_session
    def api_signout():
        svc.sessions.revoke(g.token)
        tracker = svc.trackers.pop(g.token, None)
        if tracker is not None:
            tracker.dispose()
        if not svc.sessions.tokens_for(g.user.email):
            svc.cache.clear_user(g.user.email)
            svc.cache.clear_pending_drafts(g.user.email)
        return jsonify({"signed_out": True})

    @app.route("/api/profile", methods=["GET"])
    @require_session
    def api_profile():
        return jsonify({"user": g.user.to_dict()})

    @app.route("/api/profile", methods=["PUT"])
    @require_session
    def api_profile_update():
        name = (body().get("name") or "").strip()
        if not name:
            raise ValidationError("Name is required")
        user = svc.auth.update_user(g.user.email, name)
        if svc.cache.is_logged_in(user.email):
            svc.cache.set_user(user)
        return jsonify({"user": user.to_dict()})

    @app.route("/api/session/activity", methods=["POST"])
    @require_session
    def api_activity():
        event = (body().get("event") or "").strip().lower()
        tracker = svc.trackers.setdefault(g.token, TypingTracker(settings.typing_debounce_secs))
        if event == "keystroke":
            tracker.keystroke()
        elif event == "focus":
            tracker.focus()
        elif event == "blur":
            tracker.blur()
        else:
            raise ValidationError("event must be 'keystroke', 'focus' or 'blur'")
        return jsonify({"typing": tracker.is_typing})

    # ── Todos ────────────────────────────────────────────────────────────────

    def visible_todos(list_id: Optional[str]):
        if list_id:
            return svc.todos.get_todos_in_shared_list(g.user.user_id, list_id)
        return svc.todos.get_todos(g.user.user_id)

    @app.route("/api/todos", methods=["GET"])
    @require_session
    def api_todos():
        todos = visible_todos(request.args.get("list_id"))
        return jsonify({
            "todos": [t.to_dict() for t in todos],
            "count": len(todos),
            "total_time": total_estimated_time(todos),
        })

    @app.route("/api/todos", methods=["POST"])
    @require_session
    def api_create_todo():
        """
        Create one or several todos.

        Body is one of:
            { text, list_id?, split? }      → analyzed here (split on request)
            { text, is_analyzed: true, category, priority, ... }  → used as-is
            { drafts: [...], list_id? }     → batch from the vision pipeline
        """
        data = body()
        list_id = data.get("list_id") or None

        if "drafts" in data:
            drafts = annotated([TodoDraft.from_dict(d) for d in data.get("drafts") or []])
            created, failed = svc.todos.create_many(g.user.user_id, drafts, list_id)
            svc.cache.clear_pending_drafts(g.user.email)
            return jsonify({"todos": [t.to_dict() for t in created], "failed": failed}), 201

        text = data.get("text") or ""
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Todo text is required")
        text = text.strip()

        if data.get("split"):
            pieces = split_multiple_todos(text)
            drafts = annotated([TodoDraft.from_dict({"text": p}) for p in pieces])
            created, failed = svc.todos.create_many(g.user.user_id, drafts, list_id)
            return jsonify({"todos": [t.to_dict() for t in created], "failed": failed}), 201

        if data.get("is_analyzed"):
            annotation = TodoDraft.from_dict(data).annotation
        else:
            annotation = svc.analyzer.analyze(text)
        todo = svc.todos.create_todo(g.user.user_id, text, annotation, list_id)
        return jsonify({"todo": todo.to_dict()}), 201

    @app.route("/api/todos/<todo_id>", methods=["PUT"])
    @require_session
    def api_update_todo(todo_id):
        data = body()
        owner_id = data.get("owner_id") or None
        updates = {k: data[k] for k in ("text", "completed", "category") if k in data}

        if "text" in updates:
            if not isinstance(updates["text"], str):
                raise ValidationError("text must be a string")
            current = svc.todos.get_todo(g.user.user_id, todo_id, owner_id)
            text = (updates["text"] or "").strip()
            if text and text != current.text:
                annotation = svc.analyzer.analyze(text)
                updates.update({
                    "category": annotation.category,
                    "priority": annotation.priority,
                    "sentiment": annotation.sentiment,
                    "time_estimate": annotation.time_estimate,
                })

        todo = svc.todos.update_todo(g.user.user_id, todo_id, updates, owner_id)
        return jsonify({"todo": todo.to_dict()})

    @app.route("/api/todos/<todo_id>", methods=["DELETE"])
    @require_session
    def api_delete_todo(todo_id):
        deleted = svc.todos.delete_todo(g.user.user_id, todo_id, request.args.get("owner_id"))
        return jsonify({"deleted": deleted})

    @app.route("/api/todos/<todo_id>/subtasks", methods=["GET"])
    @require_session
    def api_subtasks(todo_id):
        subtasks = svc.todos.get_subtasks(g.user.user_id, todo_id, request.args.get("owner_id"))
        return jsonify({"subtasks": [s.to_dict() for s in subtasks]})

    @app.route("/api/todos/<todo_id>/subtasks", methods=["POST"])
    @require_session
    def api_create_subtask(todo_id):
        data = body()
        text = (data.get("text") or "").strip()
        if not text:
            raise ValidationError("Subtask text is required")
        subtask = svc.todos.create_subtask(g.user.user_id, todo_id, text,
                                           svc.analyzer.analyze(text),
                                           data.get("owner_id") or None)
        return jsonify({"subtask": subtask.to_dict()}), 201

    @app.route("/api/todos/<todo_id>/subtasks/<subtask_id>", methods=["DELETE"])
    @require_session
    def api_delete_subtask(todo_id, subtask_id):
        deleted = svc.todos.delete_subtask(g.user.user_id, subtask_id, todo_id,
                                           request.args.get("owner_id"))
        return jsonify({"deleted": deleted})

    # ── Analysis / vision ────────────────────────────────────────────────────

    @app.route("/api/analyze", methods=["POST"])
    @require_session
    def api_analyze():
        text = (body().get("text") or "").strip()
        if not text:
            raise ValidationError("text is required")
        return jsonify(svc.analyzer.analyze(text).to_dict())

    @app.route("/api/split", methods=["POST"])
    @require_session
    def api_split():
        return jsonify({"todos": split_multiple_todos(body().get("text") or "")})

    @app.route("/api/vision/extract", methods=["POST"])
    @require_session
    def api_vision_extract():
        upload = request.files.get("image")
        if upload is None:
            raise ImageValidationError("Please select a valid image file (PNG, JPG, GIF, etc.)")
        text, drafts = svc.vision.drafts_from_image(upload.read(), upload.mimetype or "")
        payload = [d.to_dict() for d in drafts]
        svc.cache.set_pending_drafts(g.user.email, payload)
        return jsonify({"text": text, "drafts": payload})

    @app.route("/api/vision/parse", methods=["POST"])
    @require_session
    def api_vision_parse():
        drafts = svc.vision.drafts_from_text(body().get("text") or "")
        payload = [d.to_dict() for d in drafts]
        svc.cache.set_pending_drafts(g.user.email, payload)
        return jsonify({"drafts": payload})

    @app.route("/api/drafts", methods=["GET"])
    @require_session
    def api_pending_drafts():
        """Extracted drafts not yet confirmed, restored when the client reloads."""
        return jsonify({"drafts": svc.cache.get_pending_drafts(g.user.email)})

    @app.route("/api/drafts", methods=["DELETE"])
    @require_session
    def api_discard_drafts():
        svc.cache.clear_pending_drafts(g.user.email)
        return jsonify({"drafts": []})

    # ── Preferences ──────────────────────────────────────────────────────────

    @app.route("/api/preferences", methods=["GET"])
    @require_session
    def api_preferences():
        return jsonify({"preferences": svc.cache.get_preferences(g.user.email)})

    @app.route("/api/preferences", methods=["PUT"])
    @require_session
    def api_update_preferences():
        updates = body()
        bad = [k for k, v in updates.items() if not isinstance(v, (bool, int, float, str))]
        if bad:
            raise ValidationError(f"Preference values must be scalars: {', '.join(sorted(bad))}")
        prefs = svc.cache.update_preferences(g.user.email, updates)
        return jsonify({"preferences": prefs})

    # ── Insights ─────────────────────────────────────────────────────────────

    @app.route("/api/insights")
    @require_session
    def api_insights():
        return jsonify(build_insights(visible_todos(request.args.get("list_id"))))

    @app.route("/api/suggestions")
    @require_session
    def api_suggestions():
        previous = svc.todos.get_todos(g.user.user_id)
        return jsonify({"suggestions": get_suggestions(request.args.get("q", ""), previous)})

    # ── Shared lists ─────────────────────────────────────────────────────────

    @app.route("/api/lists", methods=["GET"])
    @require_session
    def api_lists():
        lists = svc.todos.get_shared_lists(g.user.user_id)
        return jsonify({"lists": [l.to_dict() for l in lists]})

    @app.route("/api/lists", methods=["POST"])
    @require_session
    def api_create_list():
        data = body()
        lst = svc.todos.create_shared_list(g.user.user_id, data.get("name", ""),
                                           data.get("description", ""))
        return jsonify({"list": lst.to_dict()}), 201

    @app.route("/api/lists/<list_id>", methods=["DELETE"])
    @require_session
    def api_delete_list(list_id):
        return jsonify({"deleted": svc.todos.delete_shared_list(g.user.user_id, list_id)})

    @app.route("/api/lists/<list_id>/members", methods=["POST"])
    @require_session
    def api_add_member(list_id):
        data = body()
        member_id = data.get("user_id")
        if not member_id and data.get("email"):
            member = svc.auth.get_user_by_email(data["email"])
            if member is None:
                raise ValidationError("No user with that email")
            member_id = member.user_id
        if not member_id:
            raise ValidationError("user_id or email is required")
        lst = svc.todos.add_member(g.user.user_id, list_id, member_id,
                                   data.get("permission", "editor"))
        return jsonify({"list": lst.to_dict()})

    @app.route("/api/lists/<list_id>/members/<member_id>", methods=["DELETE"])
    @require_session
    def api_remove_member(list_id, member_id):
        lst = svc.todos.remove_member(g.user.user_id, list_id, member_id)
        return jsonify({"list": lst.to_dict()})

    # ── Admin ────────────────────────────────────────────────────────────────

    @app.route("/api/admin/users", methods=["GET"])
    @require_admin
    def api_admin_users():
        users = svc.auth.get_all_users()
        return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})

    @app.route("/api/admin/users/<email>", methods=["PUT"])
    @require_admin
    def api_admin_update_user(email):
        data = body()
        user = svc.auth.update_user_admin(email, data)
        if "is_admin" in data:
            user = svc.auth.set_admin_status(email, bool(data["is_admin"]))
        return jsonify({"user": user.to_dict()})

    @app.route("/api/admin/users/<email>", methods=["DELETE"])
    @require_admin
    def api_admin_delete_user(email):
        if email.strip().lower() == g.user.email:
            raise ValidationError("You cannot delete your own account")
        return jsonify({"deleted": svc.auth.delete_user(email)})

    @app.route("/api/admin/todos", methods=["GET"])
    @require_admin
    def api_admin_todos():
        user_id = request.args.get("user_id")
        todos = svc.todos.get_todos_by_user_id(user_id) if user_id else svc.todos.get_all_todos()
        return jsonify({"todos": [t.to_dict() for t in todos], "count": len(todos)})

    @app.route("/api/admin/todos/<user_id>/<todo_id>", methods=["PUT"])
    @require_admin
    def api_admin_update_todo(user_id, todo_id):
        todo = svc.todos.update_todo_admin(user_id, todo_id, body().get("completed"))
        return jsonify({"todo": todo.to_dict()})

    @app.route("/api/admin/todos/<user_id>/<todo_id>", methods=["DELETE"])
    @require_admin
    def api_admin_delete_todo(user_id, todo_id):
        return jsonify({"deleted": svc.todos.delete_todo_admin(user_id, todo_id)})

    # ── Shell ────────────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        return jsonify({
            "status": "ok",
            "version": __version__,
            "db": settings.db_path,
            "model": getattr(llm, "configured", True),
            "ocr": ocr is not None,
        })

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def index(path):
        # Client-side routes all get the shell
        if path.startswith("api/"):
            abort(404)
        return send_from_directory(settings.static_dir, "index.html")

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="To-do List Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to the SQLite database (overrides config and TODOLIST_DB)")
    parser.add_argument("--config", help="Path to config.yaml")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    settings = Settings.load(args.config)
    if args.db:
        settings.db_path = args.db

    app = create_app(settings)
    svc = app.extensions["todolist"]
    svc.refresher.start()
    atexit.register(svc.refresher.stop)
    if svc.ocr is not None:
        atexit.register(svc.ocr.dispose)
    if hasattr(svc.llm, "close"):
        atexit.register(svc.llm.close)

    print(f"""
╔═══════════════════════════════════════╗
║  To-do List Server                    ║
╠═══════════════════════════════════════╣
║  URL:   http://{args.host}:{args.port:<19}║
║  DB:    {settings.db_path[-30:]:<30}║
║  Model: {("configured" if svc.llm.configured else "rules only"):<30}║
╚═══════════════════════════════════════╝
""")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
