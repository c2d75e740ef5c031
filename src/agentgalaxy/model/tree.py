"""The file-system model: node tree, incremental mutation and snapshots.

FileSystemModel has a single writer (the watch loop). After every applied
batch it publishes a new ModelSnapshot by swapping one attribute, so readers
on any task only ever see a complete tree.
"""

from __future__ import annotations

import itertools
import os
import stat
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from agentgalaxy.errors import RootNotFoundError, WatchError
from agentgalaxy.logging import get_logger
from agentgalaxy.model.events import WatchEvent, WatchKind
from agentgalaxy.model.ignore import IGNORE_FILENAME, IgnoreRules
from agentgalaxy.model.layout import LayoutEngine
from agentgalaxy.model.node import Node, NodeKind, NodeView, category_for

log = get_logger("model")


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class ModelSnapshot:
    """Immutable view of the tree at one version."""

    version: int
    root: str
    root_id: int | None = None
    nodes: Mapping[int, NodeView] = field(default_factory=_empty_mapping)
    paths: Mapping[str, int] = field(default_factory=_empty_mapping)
    stale: bool = False
    stale_reason: str | None = None
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: int | None) -> NodeView | None:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def lookup(self, path: str) -> NodeView | None:
        node_id = self.paths.get(os.path.normpath(path))
        return self.nodes.get(node_id) if node_id is not None else None

    def children_of(self, node_id: int) -> list[NodeView]:
        node = self.nodes.get(node_id)
        if node is None:
            return []
        return [self.nodes[c] for c in node.children if c in self.nodes]


class FileSystemModel:
    """Builds and incrementally mutates the node tree for one root.

    Example:
        model = FileSystemModel("/project")
        model.build()
        model.apply_batch([WatchEvent.create("/project/new.py")])
        snapshot = model.snapshot
    """

    def __init__(
        self,
        root: str | Path,
        layout: LayoutEngine | None = None,
        ignore: IgnoreRules | None = None,
        extra_ignore: Iterable[str] = (),
    ) -> None:
        root_path = Path(root).expanduser()
        if not root_path.is_dir():
            raise RootNotFoundError(str(root))
        root_path = root_path.resolve()

        self._root = str(root_path)
        self._layout = layout or LayoutEngine()
        self._ignore = ignore or IgnoreRules(root_path, extra_ignore)

        self._ids = itertools.count()
        self._nodes: dict[int, Node] = {}
        self._paths: dict[str, int] = {}
        self._views: dict[int, NodeView] = {}
        self._dirty: set[int] = set()
        self._root_id: int | None = None

        self._version = 0
        self._stale = False
        self._stale_reason: str | None = None
        self._stale_changed = False
        self.skipped = 0

        self._snapshot = ModelSnapshot(version=0, root=self._root)

    @property
    def root(self) -> str:
        return self._root

    @property
    def snapshot(self) -> ModelSnapshot:
        """The latest published snapshot."""
        return self._snapshot

    @property
    def layout(self) -> LayoutEngine:
        return self._layout

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    def _norm(self, path: str) -> str:
        return os.path.normpath(os.path.abspath(path))

    def _rel(self, path: str) -> str | None:
        """Root-relative posix path, "" for the root, None if outside."""
        if path == self._root:
            return ""
        prefix = self._root.rstrip(os.sep) + os.sep
        if not path.startswith(prefix):
            return None
        return path[len(prefix) :].replace(os.sep, "/")

    def _ignored(self, path: str, is_dir: bool) -> bool:
        rel = self._rel(path)
        if rel is None:
            return True
        return self._ignore.is_ignored(rel, is_dir)

    def _subtree(self, node: Node) -> list[Node]:
        found = [node]
        stack = [node]
        while stack:
            current = stack.pop()
            for child_id in current.children.values():
                child = self._nodes[child_id]
                found.append(child)
                stack.append(child)
        return found

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(self) -> ModelSnapshot:
        """Walk the root and publish the initial snapshot.

        Ids keep counting across rebuilds so an id is never handed out twice.
        """
        self._nodes.clear()
        self._paths.clear()
        self._views.clear()
        self._dirty.clear()
        self.skipped = 0
        self._ignore.reset()

        st = os.stat(self._root)
        root = Node(
            id=next(self._ids),
            path=self._root,
            name=os.path.basename(self._root) or self._root,
            kind=NodeKind.DIRECTORY,
            parent=None,
            depth=0,
            mtime=st.st_mtime,
            category="directory",
        )
        self._nodes[root.id] = root
        self._paths[root.path] = root.id
        self._root_id = root.id
        self._dirty.add(root.id)

        self._walk(root)
        self._weigh(root)
        self._layout.place(root, None)
        self._layout.place_subtree(root, self._nodes)

        self._publish()
        log.info("Built model for %s: %d nodes (%d skipped)", self._root, len(self._nodes), self.skipped)
        return self._snapshot

    def _scan(self, directory: str) -> list[tuple[os.DirEntry[str], bool]]:
        """Sorted, unignored entries of one directory. Directories first."""
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except FileNotFoundError:
            return []
        except OSError as e:
            self.skipped += 1
            log.warning("Skipping unreadable directory %s: %s", directory, e)
            return []

        rel_dir = self._rel(directory)
        if rel_dir is not None:
            self._ignore.load_directory(rel_dir)

        result: list[tuple[os.DirEntry[str], bool]] = []
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError as e:
                self.skipped += 1
                log.warning("Skipping %s: %s", entry.path, e)
                continue
            if self._ignored(entry.path, is_dir):
                continue
            result.append((entry, is_dir))
        result.sort(key=lambda item: (not item[1], item[0].name))
        return result

    def _walk(self, top: Node) -> None:
        stack = [top]
        while stack:
            directory = stack.pop()
            children: list[Node] = []
            for entry, is_dir in self._scan(directory.path):
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError as e:
                    self.skipped += 1
                    log.warning("Skipping %s: %s", entry.path, e)
                    continue
                if entry.path in self._paths:
                    continue
                node = self._attach(directory, entry.path, is_dir, st)
                if is_dir:
                    children.append(node)
            # Reversed so directories are visited in slot order
            stack.extend(reversed(children))

    def _weigh(self, node: Node) -> int:
        """Capture layout weights (subtree node counts) bottom-up."""
        order = self._subtree(node)
        for current in reversed(order):
            current.weight = 1 + sum(self._nodes[c].weight for c in current.children.values())
        return node.weight

    def _attach(self, parent: Node, path: str, is_dir: bool, st: os.stat_result) -> Node:
        kind = NodeKind.DIRECTORY if is_dir else NodeKind.FILE
        node = Node(
            id=next(self._ids),
            path=path,
            name=os.path.basename(path),
            kind=kind,
            parent=parent.id,
            depth=parent.depth + 1,
            slot=self._layout.allocate_slot(parent),
            size=0 if is_dir else st.st_size,
            mtime=st.st_mtime,
            category=category_for(path, kind),
        )
        parent.children[node.slot] = node.id
        self._nodes[node.id] = node
        self._paths[path] = node.id
        self._dirty.add(node.id)
        self._dirty.add(parent.id)
        return node

    def _add_subtree(self, parent: Node, path: str, is_dir: bool, st: os.stat_result) -> Node:
        node = self._attach(parent, path, is_dir, st)
        if is_dir:
            self._walk(node)
            self._dirty.update(n.id for n in self._subtree(node))
        self._weigh(node)
        self._layout.place(node, parent)
        self._layout.place_subtree(node, self._nodes)
        parent.scale = self._layout.scale(parent)
        return node

    # ------------------------------------------------------------------
    # Incremental mutation
    # ------------------------------------------------------------------

    def apply_batch(self, events: Iterable[WatchEvent]) -> int:
        """Apply a batch of watch events and publish one snapshot.

        Returns the number of events that changed the tree.
        """
        changed = 0
        touched_ignores: set[str] = set()
        for event in events:
            try:
                changed += self._apply(event, touched_ignores)
            except WatchError as e:
                self.skipped += 1
                log.warning("Skipping watch event %s %s: %s", event.kind.value, event.path, e)

        if touched_ignores:
            for rel_dir in touched_ignores:
                self._ignore.load_directory(rel_dir)
            log.info("Ignore rules changed, reconciling model")
            changed += self._reconcile(refresh=False)

        if changed or self._dirty or self._stale_changed:
            self._publish()
        return changed

    def _note_ignore_file(self, path: str, touched: set[str]) -> None:
        if os.path.basename(path) != IGNORE_FILENAME:
            return
        rel_dir = self._rel(os.path.dirname(path))
        if rel_dir is not None:
            touched.add(rel_dir)

    def _apply(self, event: WatchEvent, touched: set[str]) -> int:
        path = self._norm(event.path)
        self._note_ignore_file(path, touched)

        rel = self._rel(path)
        if rel is None:
            return 0
        if rel == "":
            if event.kind in (WatchKind.REMOVE, WatchKind.RENAME):
                self.mark_stale("watched root was removed or moved", publish=False)
            return 0

        if event.kind is WatchKind.CREATE:
            if path in self._paths:
                return self._modify(path)
            return self._create(path)
        if event.kind is WatchKind.MODIFY:
            if path in self._paths:
                return self._modify(path)
            return self._create(path)
        if event.kind is WatchKind.REMOVE:
            return self._remove(path)
        if event.kind is WatchKind.RENAME and event.dest_path:
            dest = self._norm(event.dest_path)
            self._note_ignore_file(dest, touched)
            return self._rename(path, dest)
        return 0

    def _lstat(self, path: str) -> os.stat_result | None:
        try:
            return os.lstat(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise WatchError(str(e), path=path) from e

    def _ensure_dir(self, path: str) -> Node | None:
        """Return the directory node for ``path``, materializing ancestors."""
        node_id = self._paths.get(path)
        if node_id is not None:
            node = self._nodes[node_id]
            return node if node.is_dir else None
        if self._rel(path) in (None, ""):
            return None

        parent = self._ensure_dir(os.path.dirname(path))
        if parent is None:
            return None
        if path in self._paths:
            # Materializing the parent walked this directory already
            node = self._nodes[self._paths[path]]
            return node if node.is_dir else None

        st = self._lstat(path)
        if st is None or not stat.S_ISDIR(st.st_mode) or self._ignored(path, True):
            return None
        return self._add_subtree(parent, path, True, st)

    def _create(self, path: str) -> int:
        st = self._lstat(path)
        if st is None:
            return 0
        is_dir = stat.S_ISDIR(st.st_mode)
        if self._ignored(path, is_dir):
            return 0

        parent = self._ensure_dir(os.path.dirname(path))
        if parent is None:
            return 0
        if path in self._paths:
            return 1

        node = self._add_subtree(parent, path, is_dir, st)
        log.debug("Created %s node %d for %s", node.kind.value, node.id, path)
        return 1

    def _modify(self, path: str) -> int:
        node = self._nodes[self._paths[path]]
        st = self._lstat(path)
        if st is None:
            return self._remove(path)

        size = 0 if node.is_dir else st.st_size
        if size == node.size and st.st_mtime == node.mtime:
            return 0
        node.size = size
        node.mtime = st.st_mtime
        node.scale = self._layout.scale(node)
        self._dirty.add(node.id)
        return 1

    def _remove(self, path: str) -> int:
        node_id = self._paths.get(path)
        if node_id is None or node_id == self._root_id:
            return 0

        node = self._nodes[node_id]
        for gone in self._subtree(node):
            del self._nodes[gone.id]
            del self._paths[gone.path]
            self._views.pop(gone.id, None)
            self._dirty.discard(gone.id)
        if node.is_dir:
            rel = self._rel(path)
            if rel:
                self._ignore.forget_directory(rel)

        parent = self._nodes[node.parent] if node.parent is not None else None
        if parent is not None:
            # The slot is retired: next_slot never goes back
            parent.children.pop(node.slot, None)
            parent.scale = self._layout.scale(parent)
            self._dirty.add(parent.id)
        log.debug("Removed node %d (%s)", node_id, path)
        return 1

    def _rename(self, src: str, dest: str) -> int:
        src_id = self._paths.get(src)
        dest_rel = self._rel(dest)
        if src_id is None:
            return self._create(dest) if dest_rel else 0
        if not dest_rel:
            return self._remove(src)

        node = self._nodes[src_id]
        if self._ignored(dest, node.is_dir):
            return self._remove(src)
        if dest in self._paths:
            self._remove(dest)

        new_parent = self._ensure_dir(os.path.dirname(dest))
        if new_parent is None or new_parent.id in {n.id for n in self._subtree(node)}:
            return self._remove(src)
        if self._paths.get(dest, src_id) != src_id:
            # A parent walk picked the destination up under a new identity
            return self._remove(src)

        moved = self._subtree(node)
        src_rel = self._rel(src)
        if node.is_dir and src_rel:
            self._ignore.forget_directory(src_rel)

        for current in moved:
            del self._paths[current.path]
            current.path = dest + current.path[len(src) :]
            self._paths[current.path] = current.id
        node.name = os.path.basename(dest)
        node.category = category_for(dest, node.kind)

        if new_parent.id != node.parent:
            old_parent = self._nodes[node.parent]
            old_parent.children.pop(node.slot, None)
            old_parent.scale = self._layout.scale(old_parent)
            node.parent = new_parent.id
            node.depth = new_parent.depth + 1
            node.slot = self._layout.allocate_slot(new_parent)
            new_parent.children[node.slot] = node.id
            self._layout.place(node, new_parent)
            self._layout.place_subtree(node, self._nodes)
            new_parent.scale = self._layout.scale(new_parent)
            self._dirty.update((old_parent.id, new_parent.id))

        if node.is_dir:
            for current in moved:
                if current.is_dir:
                    self._ignore.load_directory(self._rel(current.path) or "")
        self._dirty.update(n.id for n in moved)
        log.debug("Renamed node %d: %s -> %s", node.id, src, dest)
        return 1

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _scan_disk(self) -> dict[str, bool]:
        """All unignored paths currently on disk, parents before children."""
        found: dict[str, bool] = {}
        stack = [self._root]
        while stack:
            directory = stack.pop()
            subdirs: list[str] = []
            for entry, is_dir in self._scan(directory):
                found[entry.path] = is_dir
                if is_dir:
                    subdirs.append(entry.path)
            stack.extend(reversed(subdirs))
        return found

    def _reconcile(self, refresh: bool) -> int:
        on_disk = self._scan_disk()
        changed = 0
        for path in sorted(self._paths, key=len, reverse=True):
            if path != self._root and path in self._paths and path not in on_disk:
                changed += self._remove(path)
        for path in on_disk:
            try:
                if path not in self._paths:
                    changed += self._create(path)
                elif refresh:
                    changed += self._modify(path)
            except WatchError as e:
                self.skipped += 1
                log.warning("Skipping %s during reconcile: %s", path, e)
        return changed

    def rescan(self) -> int:
        """Reconcile the whole tree against disk and publish.

        Used when watch events were lost (queue overflow, backend restart).
        """
        self._ignore.reset()
        changed = self._reconcile(refresh=True)
        self._publish()
        log.info("Rescanned %s: %d changes", self._root, changed)
        return changed

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def mark_stale(self, reason: str, publish: bool = True) -> None:
        """Flag the model as no longer tracking disk (backend failure)."""
        if not self._stale:
            log.warning("Model marked stale: %s", reason)
            self._stale_changed = True
        self._stale = True
        self._stale_reason = reason
        if publish:
            self._publish()

    def clear_stale(self) -> None:
        if self._stale:
            self._stale = False
            self._stale_reason = None
            self._publish()

    def _publish(self) -> None:
        for node_id in self._dirty:
            node = self._nodes.get(node_id)
            if node is not None:
                self._views[node_id] = node.freeze()
        self._dirty.clear()
        self._stale_changed = False
        self._version += 1
        self._snapshot = ModelSnapshot(
            version=self._version,
            root=self._root,
            root_id=self._root_id,
            nodes=MappingProxyType(dict(self._views)),
            paths=MappingProxyType(dict(self._paths)),
            stale=self._stale,
            stale_reason=self._stale_reason,
            skipped=self.skipped,
        )
