"""
Todo persistence adapter: todos, subtasks and shared lists.

Todos live in the `todos` table partitioned by owning user id. Subtasks are
stored in their parent's partition and linked both ways: the parent keeps
an ordered `subtask_ids` list, the child keeps `parent_todo_id`.

Linking and unlinking a subtask are two sequential writes (parent first,
then child). They are not atomic: a crash in between leaves a dangling id
in the parent or an orphaned child. Readers skip dangling ids, and an
orphaned child is deleted on its own.
"""
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .docstore import DocumentStore
from .errors import AuthorizationError, NotFoundError, StoreError, ValidationError
from .schema import (
    Annotation,
    Category,
    Permission,
    Priority,
    Sentiment,
    SharedList,
    TimeEstimate,
    Todo,
    TodoDraft,
    format_minutes,
    utc_now,
)

logger = logging.getLogger(__name__)

TODOS = "todos"
SHARED_LISTS = "shared_lists"

UPDATABLE_FIELDS = ("text", "completed", "category", "priority", "sentiment", "time_estimate")


def _require_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false")
    return value


def _serialize_field(name: str, value: Any) -> Any:
    """Typed annotation values → stored JSON shapes."""
    if value is None:
        return None
    if name == "category":
        return value.value if isinstance(value, Category) else Category.from_str(str(value)).value
    if name == "completed":
        return _require_bool("completed", value)
    if isinstance(value, (Priority, Sentiment, TimeEstimate)):
        return value.to_dict()
    return value


def total_estimated_time(todos: Iterable[Todo]) -> str:
    """Sum of estimated minutes over incomplete todos, as "Xh Ym" / "Ym"."""
    total = sum(t.time_estimate.minutes for t in todos
                if not t.completed and t.time_estimate is not None)
    return format_minutes(total)


class TodoService:
    """CRUD intents → keyed document store operations."""

    def __init__(self, store: DocumentStore):
        self.store = store

    # ── Lookup / access ──────────────────────────────────────────────────────

    def _load(self, owner_id: str, todo_id: str) -> Todo:
        doc = self.store.get(TODOS, {"user_id": owner_id, "todo_id": todo_id})
        if not doc:
            raise NotFoundError(f"Todo {todo_id} not found")
        return Todo.from_dict(doc)

    def _check_access(self, actor_id: str, todo: Todo, write: bool = True) -> None:
        """Owners always pass; others need membership of the todo's shared list."""
        if todo.user_id == actor_id:
            return
        if todo.shared_list_id:
            lst = self.get_shared_list(todo.shared_list_id)
            allowed = lst.can_edit(actor_id) if write else lst.is_member(actor_id)
            if allowed:
                return
        raise AuthorizationError("You do not have permission to modify this todo")

    def get_todo(self, actor_id: str, todo_id: str, owner_id: Optional[str] = None) -> Todo:
        todo = self._load(owner_id or actor_id, todo_id)
        self._check_access(actor_id, todo, write=False)
        return todo

    # ── Todos ────────────────────────────────────────────────────────────────

    def create_todo(self, user_id: str, text: str, annotation: Optional[Annotation] = None,
                    shared_list_id: Optional[str] = None) -> Todo:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Todo text is required")
        if shared_list_id:
            lst = self.get_shared_list(shared_list_id)
            if not lst.can_edit(user_id):
                raise AuthorizationError("You do not have permission to add todos to this list")

        todo = Todo(user_id=user_id, todo_id=str(uuid.uuid4()), text=text,
                    shared_list_id=shared_list_id)
        if annotation is not None:
            todo.apply_annotation(annotation)
        self.store.put(TODOS, todo.to_dict())
        return todo

    def create_many(self, user_id: str, drafts: List[TodoDraft],
                    shared_list_id: Optional[str] = None) -> Tuple[List[Todo], List[str]]:
        """
        Sequential independent creates. Returns (created, failed_texts);
        a failure does not stop the loop and nothing is rolled back.
        """
        created: List[Todo] = []
        failed: List[str] = []
        for draft in drafts:
            try:
                created.append(self.create_todo(user_id, draft.text, draft.annotation, shared_list_id))
            except (StoreError, ValidationError, AuthorizationError) as e:
                logger.error(f"Failed to create todo '{draft.text}': {e}")
                failed.append(draft.text)
        return created, failed

    def get_todos(self, user_id: str) -> List[Todo]:
        """The user's personal todos (not in a shared list), oldest first."""
        todos = [Todo.from_dict(d) for d in self.store.query(TODOS, user_id)]
        todos = [t for t in todos if not t.shared_list_id]
        return sorted(todos, key=lambda t: t.created_at)

    def update_todo(self, actor_id: str, todo_id: str, updates: Dict[str, Any],
                    owner_id: Optional[str] = None) -> Todo:
        """
        Partial update: only keys present in `updates` are written.
        `updated_at` is always refreshed.
        """
        owner_id = owner_id or actor_id
        todo = self._load(owner_id, todo_id)
        self._check_access(actor_id, todo)

        fields = {name: _serialize_field(name, updates[name])
                  for name in UPDATABLE_FIELDS if name in updates}
        if "text" in fields:
            fields["text"] = (fields["text"] or "").strip()
            if not fields["text"]:
                raise ValidationError("Todo text is required")
        fields["updated_at"] = utc_now()
        doc = self.store.update(TODOS, {"user_id": owner_id, "todo_id": todo_id}, fields)
        return Todo.from_dict(doc)

    def delete_todo(self, actor_id: str, todo_id: str, owner_id: Optional[str] = None) -> bool:
        """Delete a todo, its subtasks, and its link in the parent (if any)."""
        owner_id = owner_id or actor_id
        todo = self._load(owner_id, todo_id)
        self._check_access(actor_id, todo)

        if todo.parent_todo_id:
            parent_key = {"user_id": owner_id, "todo_id": todo.parent_todo_id}
            if self.store.get(TODOS, parent_key) is None:
                logger.warning(f"Orphaned subtask {todo_id}: parent {todo.parent_todo_id} is gone")
                return self.store.delete(TODOS, {"user_id": owner_id, "todo_id": todo_id})
            return self.delete_subtask(actor_id, todo_id, todo.parent_todo_id, owner_id)

        for child_id in todo.subtask_ids:
            self.store.delete(TODOS, {"user_id": owner_id, "todo_id": child_id})
        return self.store.delete(TODOS, {"user_id": owner_id, "todo_id": todo_id})

    # ── Subtasks ─────────────────────────────────────────────────────────────

    def create_subtask(self, actor_id: str, parent_id: str, text: str,
                       annotation: Optional[Annotation] = None,
                       owner_id: Optional[str] = None) -> Todo:
        owner_id = owner_id or actor_id
        parent = self._load(owner_id, parent_id)
        self._check_access(actor_id, parent)
        if parent.parent_todo_id:
            raise ValidationError("Subtasks cannot have subtasks")
        text = (text or "").strip()
        if not text:
            raise ValidationError("Subtask text is required")

        child = Todo(user_id=owner_id, todo_id=str(uuid.uuid4()), text=text,
                     parent_todo_id=parent_id, shared_list_id=parent.shared_list_id)
        if annotation is not None:
            child.apply_annotation(annotation)

        # Two writes, parent first
        self.store.update(TODOS, {"user_id": owner_id, "todo_id": parent_id}, {
            "subtask_ids": parent.subtask_ids + [child.todo_id],
            "updated_at": utc_now(),
        })
        self.store.put(TODOS, child.to_dict())
        return child

    def get_subtasks(self, actor_id: str, parent_id: str,
                     owner_id: Optional[str] = None) -> List[Todo]:
        owner_id = owner_id or actor_id
        parent = self._load(owner_id, parent_id)
        self._check_access(actor_id, parent, write=False)
        subtasks = []
        for child_id in parent.subtask_ids:
            doc = self.store.get(TODOS, {"user_id": owner_id, "todo_id": child_id})
            if doc is None:
                logger.warning(f"Dangling subtask {child_id} in parent {parent_id}")
                continue
            subtasks.append(Todo.from_dict(doc))
        return subtasks

    def delete_subtask(self, actor_id: str, subtask_id: str, parent_id: str,
                       owner_id: Optional[str] = None) -> bool:
        owner_id = owner_id or actor_id
        parent = self._load(owner_id, parent_id)
        self._check_access(actor_id, parent)

        # Only children of this parent; a dangling id may still be unlinked
        doc = self.store.get(TODOS, {"user_id": owner_id, "todo_id": subtask_id})
        if doc is None:
            if subtask_id not in parent.subtask_ids:
                raise NotFoundError(f"Subtask {subtask_id} not found")
        elif doc.get("parent_todo_id") != parent_id:
            raise NotFoundError(f"Subtask {subtask_id} not found under {parent_id}")

        # Two writes, parent first
        self.store.update(TODOS, {"user_id": owner_id, "todo_id": parent_id}, {
            "subtask_ids": [sid for sid in parent.subtask_ids if sid != subtask_id],
            "updated_at": utc_now(),
        })
        return self.store.delete(TODOS, {"user_id": owner_id, "todo_id": subtask_id})

    # ── Admin-only ───────────────────────────────────────────────────────────

    def get_all_todos(self) -> List[Todo]:
        return [Todo.from_dict(d) for d in self.store.scan(TODOS)]

    def get_todos_by_user_id(self, user_id: str) -> List[Todo]:
        return [Todo.from_dict(d) for d in self.store.query(TODOS, user_id)]

    def delete_todo_admin(self, user_id: str, todo_id: str) -> bool:
        return self.store.delete(TODOS, {"user_id": user_id, "todo_id": todo_id})

    def update_todo_admin(self, user_id: str, todo_id: str, completed: bool) -> Todo:
        doc = self.store.update(TODOS, {"user_id": user_id, "todo_id": todo_id}, {
            "completed": _require_bool("completed", completed),
            "updated_at": utc_now(),
        })
        return Todo.from_dict(doc)

    # ── Shared lists ─────────────────────────────────────────────────────────

    def create_shared_list(self, owner_id: str, name: str, description: str = "") -> SharedList:
        name = (name or "").strip()
        if not name:
            raise ValidationError("List name is required")
        lst = SharedList(list_id=str(uuid.uuid4()), name=name, owner_id=owner_id,
                         description=(description or "").strip())
        self.store.put(SHARED_LISTS, lst.to_dict())
        return lst

    def get_shared_list(self, list_id: str) -> SharedList:
        doc = self.store.get(SHARED_LISTS, {"list_id": list_id})
        if not doc:
            raise NotFoundError(f"Shared list {list_id} not found")
        return SharedList.from_dict(doc)

    def get_shared_lists(self, user_id: str) -> List[SharedList]:
        """Lists the user is a member of (table scan)."""
        docs = self.store.scan(SHARED_LISTS, lambda d: user_id in (d.get("members") or []))
        return sorted((SharedList.from_dict(d) for d in docs), key=lambda l: l.created_at)

    def _require_owner(self, actor_id: str, lst: SharedList, action: str) -> None:
        if lst.permission_of(actor_id) != Permission.OWNER:
            raise AuthorizationError(f"Only the list owner can {action}")

    def add_member(self, actor_id: str, list_id: str, member_id: str,
                   permission: str = "editor") -> SharedList:
        lst = self.get_shared_list(list_id)
        self._require_owner(actor_id, lst, "add members")
        perm = Permission.from_str(permission)
        if perm == Permission.OWNER:
            raise ValidationError("A list has exactly one owner")
        if member_id not in lst.members:
            lst.members.append(member_id)
        lst.permissions[member_id] = perm
        doc = self.store.update(SHARED_LISTS, {"list_id": list_id}, {
            "members": lst.members,
            "permissions": {uid: p.value for uid, p in lst.permissions.items()},
            "updated_at": utc_now(),
        })
        return SharedList.from_dict(doc)

    def remove_member(self, actor_id: str, list_id: str, member_id: str) -> SharedList:
        lst = self.get_shared_list(list_id)
        self._require_owner(actor_id, lst, "remove members")
        if member_id == lst.owner_id:
            raise ValidationError("The owner cannot be removed from the list")
        members = [m for m in lst.members if m != member_id]
        permissions = {uid: p.value for uid, p in lst.permissions.items() if uid != member_id}
        doc = self.store.update(SHARED_LISTS, {"list_id": list_id}, {
            "members": members,
            "permissions": permissions,
            "updated_at": utc_now(),
        })
        return SharedList.from_dict(doc)

    def get_todos_in_shared_list(self, actor_id: str, list_id: str) -> List[Todo]:
        lst = self.get_shared_list(list_id)
        if not lst.is_member(actor_id):
            raise AuthorizationError("You are not a member of this list")
        docs = self.store.scan(TODOS, lambda d: d.get("shared_list_id") == list_id)
        return sorted((Todo.from_dict(d) for d in docs), key=lambda t: t.created_at)

    def delete_shared_list(self, actor_id: str, list_id: str) -> bool:
        """Owner only. The list's todos are deleted with it."""
        lst = self.get_shared_list(list_id)
        self._require_owner(actor_id, lst, "delete the list")
        for doc in self.store.scan(TODOS, lambda d: d.get("shared_list_id") == list_id):
            self.store.delete(TODOS, {"user_id": doc["user_id"], "todo_id": doc["todo_id"]})
        return self.store.delete(SHARED_LISTS, {"list_id": list_id})
