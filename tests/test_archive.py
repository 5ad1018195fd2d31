import sqlite3
from pathlib import Path

import pytest

from subclonemerge.archive import EventRecord, SubcloneRecord, TreeStore
from subclonemerge.errors import ArchiveError
from subclonemerge.models import EventKind, SomaticEvent, Subclone
from subclonemerge.treeio import tree_to_dict
from subclonemerge.treemerge import tree_merge


def build_tree() -> Subclone:
    shared = SomaticEvent(kind="cnv", chrom="7", start=54_000_000, end=56_500_000, cn_frac=4.0, label="EGFR")
    root = Subclone(label="normal", fraction=1.0)
    founder = root.add_child(
        Subclone(events=[SomaticEvent(kind="snv", chrom="17", start=7_577_120, ref="C", alt="T")], label="founder")
    )
    founder.add_child(Subclone(events=[shared], label="a", fraction=0.4))
    founder.add_child(Subclone(events=[SomaticEvent(kind="sv", chrom="9", start=10, end=5_000)], label="b"))
    return root


def test_tree_round_trip(tmp_path: Path):
    db = tmp_path / "trees.sqlite"
    tree = build_tree()
    with TreeStore(db, create=True) as store:
        tree_id = store.save_tree(tree)

    assert tree.node_id == tree_id
    assert all(n.tree_id == tree_id for n in tree.iter_preorder())

    with TreeStore(db) as store:
        assert store.tree_ids() == [tree_id]
        loaded = store.load_tree(tree_id)

    assert tree_to_dict(loaded) == tree_to_dict(tree)
    assert loaded.node_id == tree_id
    assert tree_merge(tree, loaded) and tree_merge(loaded, tree)


def test_several_trees_in_one_store(tmp_path: Path):
    db = tmp_path / "trees.sqlite"
    with TreeStore(db, create=True) as store:
        first = store.save_tree(build_tree())
        second = store.save_tree(Subclone(label="solo"))
        assert store.tree_ids() == [first, second]
        solo = store.load_tree(second)
    assert solo.label == "solo"
    assert solo.children == []


def test_shared_event_is_stored_once(tmp_path: Path):
    ev = SomaticEvent(kind=EventKind.SNV, chrom="1", start=5)
    root = Subclone(label="root")
    root.add_child(Subclone(events=[ev], label="a"))
    root.add_child(Subclone(events=[ev], label="b"))

    db = tmp_path / "trees.sqlite"
    with TreeStore(db, create=True) as store:
        tid = store.save_tree(root)
        assert len(EventRecord.all_ids(store.conn)) == 1
        loaded = store.load_tree(tid)
    a, b = loaded.children
    assert a.events[0] is b.events[0]


def test_unknown_tree_id(tmp_path: Path):
    db = tmp_path / "trees.sqlite"
    with TreeStore(db, create=True) as store:
        tid = store.save_tree(build_tree())
        with pytest.raises(ArchiveError):
            store.load_tree(tid + 1000)
        child_id = store.load_tree(tid).children[0].node_id
        with pytest.raises(ArchiveError, match="not a tree root"):
            store.load_tree(child_id)


def test_missing_store_file(tmp_path: Path):
    with pytest.raises(ArchiveError):
        TreeStore(tmp_path / "nope.sqlite")


def test_record_update_and_select(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "r.sqlite"))
    conn.row_factory = sqlite3.Row
    SubcloneRecord.create_table(conn)
    rec = SubcloneRecord(fraction=0.5, label="x")
    rid = rec.insert(conn)
    rec.label = "y"
    rec.update(conn)
    again = SubcloneRecord.select_by_id(conn, rid)
    assert again.label == "y"
    assert again.fraction == 0.5
    assert SubcloneRecord.all_ids(conn) == [rid]
    with pytest.raises(ArchiveError):
        SubcloneRecord(label="never inserted").update(conn)
    conn.close()


def test_large_tree_round_trip(tmp_path: Path):
    root = Subclone(label="root")
    node = root
    for i in range(1_500):
        ev = SomaticEvent(kind="snv", chrom=str(i % 22 + 1), start=i * 100)
        node = node.add_child(Subclone(events=[ev], label=f"n{i}"))

    db = tmp_path / "large.sqlite"
    with TreeStore(db, create=True) as store:
        other = store.save_tree(build_tree())
        tid = store.save_tree(root)
        loaded = store.load_tree(tid)
        first = store.load_tree(other)

    assert len(loaded) == 1_501
    assert sum(len(n.events) for n in loaded.iter_preorder()) == 1_500
    assert tree_to_dict(first) == tree_to_dict(build_tree())
