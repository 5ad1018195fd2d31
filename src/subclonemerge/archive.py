"""sqlite3 storage of subclone trees.

Each archivable record type describes its table (name and custom columns)
and how to turn itself into a row and back; the shared create / insert /
update / select logic lives in :class:`Archivable`. Every table gets an
``id INTEGER PRIMARY KEY AUTOINCREMENT`` column.

A tree is identified by the id of its root subclone. The comparison code
never talks to the store directly: callers load trees with
:meth:`TreeStore.load_tree` and hand the in-memory structure over.
"""

from __future__ import annotations

import abc
import logging
import sqlite3
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from .errors import ArchiveError
from .models import EventKind, SomaticEvent, Subclone

logger = logging.getLogger(__name__)

A = TypeVar("A", bound="Archivable")


class Archivable(abc.ABC):
    """A record that can be stored in, and restored from, a sqlite3 table."""

    id: Optional[int]

    @classmethod
    @abc.abstractmethod
    def table_name(cls) -> str:
        ...

    @classmethod
    @abc.abstractmethod
    def column_defs(cls) -> Sequence[Tuple[str, str]]:
        """(column name, column definition) pairs, excluding the id column."""

    @abc.abstractmethod
    def to_row(self) -> Tuple[Any, ...]:
        """Values bound to the custom columns, in ``column_defs()`` order."""

    @classmethod
    @abc.abstractmethod
    def from_row(cls: Type[A], row: sqlite3.Row) -> A:
        ...

    @classmethod
    def _columns(cls) -> List[str]:
        return [name for name, _ in cls.column_defs()]

    @classmethod
    def create_table(cls, conn: sqlite3.Connection) -> None:
        cols = "".join(f", {name} {decl}" for name, decl in cls.column_defs())
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {cls.table_name()} "
            f"(id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT{cols})"
        )

    def insert(self, conn: sqlite3.Connection) -> int:
        cols = self._columns()
        placeholders = ", ".join("?" for _ in cols)
        cur = conn.execute(
            f"INSERT INTO {self.table_name()} ({', '.join(cols)}) VALUES ({placeholders})",
            self.to_row(),
        )
        self.id = int(cur.lastrowid)
        return self.id

    def update(self, conn: sqlite3.Connection) -> None:
        if self.id is None:
            raise ArchiveError(f"Cannot update a {self.table_name()} record that was never inserted")
        assignments = ", ".join(f"{c}=?" for c in self._columns())
        conn.execute(
            f"UPDATE {self.table_name()} SET {assignments} WHERE id=?",
            tuple(self.to_row()) + (self.id,),
        )

    @classmethod
    def select_by_id(cls: Type[A], conn: sqlite3.Connection, record_id: int) -> A:
        row = conn.execute(
            f"SELECT id, {', '.join(cls._columns())} FROM {cls.table_name()} WHERE id=?",
            (int(record_id),),
        ).fetchone()
        if row is None:
            raise ArchiveError(f"No {cls.table_name()} record with id {record_id}")
        return cls.from_row(row)

    @classmethod
    def all_ids(cls, conn: sqlite3.Connection) -> List[int]:
        return [int(r[0]) for r in conn.execute(f"SELECT id FROM {cls.table_name()} ORDER BY id")]


@dataclass
class EventRecord(Archivable):
    kind: str
    chrom: str
    start: int
    end: int
    cn_frac: Optional[float] = None
    ref: Optional[str] = None
    alt: Optional[str] = None
    label: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def table_name(cls) -> str:
        return "SomaticEvents"

    @classmethod
    def column_defs(cls) -> Sequence[Tuple[str, str]]:
        return [
            ("kind", "TEXT NOT NULL"),
            ("chrom", "TEXT NOT NULL"),
            ("start_pos", "INTEGER NOT NULL"),
            ("end_pos", "INTEGER NOT NULL"),
            ("cn_frac", "REAL"),
            ("ref", "TEXT"),
            ("alt", "TEXT"),
            ("label", "TEXT"),
        ]

    def to_row(self) -> Tuple[Any, ...]:
        return (self.kind, self.chrom, self.start, self.end, self.cn_frac, self.ref, self.alt, self.label)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "EventRecord":
        return cls(
            kind=row["kind"],
            chrom=row["chrom"],
            start=int(row["start_pos"]),
            end=int(row["end_pos"]),
            cn_frac=row["cn_frac"],
            ref=row["ref"],
            alt=row["alt"],
            label=row["label"],
            id=int(row["id"]),
        )

    @classmethod
    def from_event(cls, event: SomaticEvent) -> "EventRecord":
        return cls(
            kind=event.kind.value,
            chrom=event.chrom,
            start=event.start,
            end=int(event.end),
            cn_frac=event.cn_frac,
            ref=event.ref,
            alt=event.alt,
            label=event.label,
        )

    def to_event(self) -> SomaticEvent:
        return SomaticEvent(
            kind=EventKind.parse(self.kind),
            chrom=self.chrom,
            start=self.start,
            end=self.end,
            cn_frac=self.cn_frac,
            ref=self.ref,
            alt=self.alt,
            label=self.label,
            event_id=self.id,
        )


@dataclass
class SubcloneRecord(Archivable):
    tree_id: Optional[int] = None
    parent_id: Optional[int] = None
    fraction: float = 0.0
    label: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def table_name(cls) -> str:
        return "Subclones"

    @classmethod
    def column_defs(cls) -> Sequence[Tuple[str, str]]:
        return [
            ("tree_id", "INTEGER"),
            ("parent_id", "INTEGER"),
            ("fraction", "REAL NOT NULL DEFAULT 0"),
            ("label", "TEXT"),
        ]

    def to_row(self) -> Tuple[Any, ...]:
        return (self.tree_id, self.parent_id, self.fraction, self.label)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SubcloneRecord":
        return cls(
            tree_id=row["tree_id"],
            parent_id=row["parent_id"],
            fraction=float(row["fraction"]),
            label=row["label"],
            id=int(row["id"]),
        )


@dataclass
class EventAssignmentRecord(Archivable):
    """Links a subclone to one of its local events, keeping event order."""

    subclone_id: int
    event_id: int
    rank: int = 0
    id: Optional[int] = None

    @classmethod
    def table_name(cls) -> str:
        return "SubcloneEvents"

    @classmethod
    def column_defs(cls) -> Sequence[Tuple[str, str]]:
        return [
            ("subclone_id", "INTEGER NOT NULL"),
            ("event_id", "INTEGER NOT NULL"),
            ("rank", "INTEGER NOT NULL DEFAULT 0"),
        ]

    def to_row(self) -> Tuple[Any, ...]:
        return (self.subclone_id, self.event_id, self.rank)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "EventAssignmentRecord":
        return cls(
            subclone_id=int(row["subclone_id"]),
            event_id=int(row["event_id"]),
            rank=int(row["rank"]),
            id=int(row["id"]),
        )


_RECORD_TYPES: Tuple[Type[Archivable], ...] = (EventRecord, SubcloneRecord, EventAssignmentRecord)


class TreeStore:
    """A sqlite3 file holding any number of subclone trees.

    Use as a context manager; changes are committed on a clean exit and
    rolled back otherwise.
    """

    def __init__(self, path: str | Path, *, create: bool = False) -> None:
        self.path = Path(path)
        if not create and not self.path.exists():
            raise ArchiveError(f"Tree store does not exist: {self.path}", path=str(self.path))
        if create:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(str(self.path))
        except sqlite3.Error as e:
            raise ArchiveError(f"Cannot open tree store {self.path}: {e}", path=str(self.path)) from e
        self.conn.row_factory = sqlite3.Row
        if create:
            self.create_schema()

    def __enter__(self) -> "TreeStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.conn.commit()
        else:
            self.conn.rollback()
        self.close()

    def close(self) -> None:
        self.conn.close()

    def create_schema(self) -> None:
        for rec_type in _RECORD_TYPES:
            rec_type.create_table(self.conn)
        self.conn.commit()

    def tree_ids(self) -> List[int]:
        """Ids of all trees (root subclones) in the store, ascending."""
        try:
            rows = self.conn.execute(
                f"SELECT id FROM {SubcloneRecord.table_name()} WHERE parent_id IS NULL ORDER BY id"
            ).fetchall()
        except sqlite3.Error as e:
            raise ArchiveError(f"Cannot list trees in {self.path}: {e}", path=str(self.path)) from e
        return [int(r["id"]) for r in rows]

    def save_tree(self, root: Subclone) -> int:
        """Archive a whole tree; node ids are written back onto the nodes."""
        try:
            return self._save_tree(root)
        except sqlite3.Error as e:
            raise ArchiveError(f"Failed to archive tree into {self.path}: {e}", path=str(self.path)) from e

    def _save_tree(self, root: Subclone) -> int:
        root_rec = SubcloneRecord(fraction=root.fraction, label=root.label)
        tree_id = root_rec.insert(self.conn)
        root_rec.tree_id = tree_id
        root_rec.update(self.conn)

        # the same event object may be referenced from several nodes
        event_ids: Dict[int, int] = {}
        queue = deque([(root, tree_id)])
        while queue:
            node, node_id = queue.popleft()
            node.node_id = node_id
            node.tree_id = tree_id
            for rank, ev in enumerate(node.events):
                ev_id = event_ids.get(id(ev))
                if ev_id is None:
                    ev_id = EventRecord.from_event(ev).insert(self.conn)
                    event_ids[id(ev)] = ev_id
                EventAssignmentRecord(subclone_id=node_id, event_id=ev_id, rank=rank).insert(self.conn)
            for child in node.children:
                rec = SubcloneRecord(tree_id=tree_id, parent_id=node_id, fraction=child.fraction, label=child.label)
                queue.append((child, rec.insert(self.conn)))

        self.conn.commit()
        logger.info("Archived tree %d (%d events) into %s", tree_id, len(event_ids), self.path)
        return tree_id

    def load_tree(self, tree_id: int) -> Subclone:
        """Materialise the tree whose root subclone has id ``tree_id``."""
        try:
            return self._load_tree(int(tree_id))
        except sqlite3.Error as e:
            raise ArchiveError(f"Failed to read tree {tree_id} from {self.path}: {e}", path=str(self.path)) from e

    def _load_tree(self, tree_id: int) -> Subclone:
        root_rec = SubcloneRecord.select_by_id(self.conn, tree_id)
        if root_rec.parent_id is not None:
            raise ArchiveError(
                f"Subclone {tree_id} in {self.path} is not a tree root (parent {root_rec.parent_id})",
                path=str(self.path),
            )

        rows = self.conn.execute(
            f"SELECT id, {', '.join(SubcloneRecord._columns())} FROM {SubcloneRecord.table_name()} "
            "WHERE tree_id=? OR id=? ORDER BY id",
            (tree_id, tree_id),
        ).fetchall()
        records = [SubcloneRecord.from_row(r) for r in rows]

        nodes: Dict[int, Subclone] = {
            rec.id: Subclone(fraction=rec.fraction, label=rec.label, tree_id=tree_id, node_id=rec.id)
            for rec in records
        }

        event_rows = self.conn.execute(
            f"SELECT a.subclone_id AS subclone_id, e.* "
            f"FROM {EventAssignmentRecord.table_name()} a "
            f"JOIN {EventRecord.table_name()} e ON e.id = a.event_id "
            f"JOIN {SubcloneRecord.table_name()} s ON s.id = a.subclone_id "
            "WHERE s.tree_id=? OR s.id=? "
            "ORDER BY a.subclone_id, a.rank, a.id",
            (tree_id, tree_id),
        ).fetchall()
        events: Dict[int, SomaticEvent] = {}
        for row in event_rows:
            ev_id = int(row["id"])
            if ev_id not in events:
                events[ev_id] = EventRecord.from_row(row).to_event()
            nodes[int(row["subclone_id"])].add_event(events[ev_id])

        for rec in records:
            if rec.id == tree_id:
                continue
            parent = nodes.get(rec.parent_id) if rec.parent_id is not None else None
            if parent is None:
                raise ArchiveError(
                    f"Subclone {rec.id} of tree {tree_id} references missing parent {rec.parent_id}",
                    path=str(self.path),
                )
            parent.add_child(nodes[rec.id])

        logger.debug("Loaded tree %d from %s (%d nodes, %d events)", tree_id, self.path, len(nodes), len(events))
        return nodes[tree_id]
