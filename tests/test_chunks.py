import pytest

from stagepak.chunks import ChunkMembership, chunk_id_from_name, load_memberships, partition
from stagepak.errors import InvalidChunkNameError
from stagepak.manifest import Manifest


def _manifest(*dests):
    return Manifest(entries=[(f"/src/{d}", d) for d in dests])


def test_first_listing_chunk_wins_and_unlisted_go_to_default():
    members = [
        ChunkMembership.from_lines("pakchunk0", []),
        ChunkMembership.from_lines("pakchunk1", ["Demo/x", "Demo/y"]),
        ChunkMembership.from_lines("pakchunk2", ["Demo/y", "Demo/z"]),
    ]
    chunks = partition(_manifest("Demo/w", "Demo/x", "Demo/y", "Demo/z"), members)
    assert [c.name for c in chunks] == ["pakchunk0", "pakchunk1", "pakchunk2"]
    assert chunks[0].entries.dest_paths() == ["Demo/w"]
    assert chunks[1].entries.dest_paths() == ["Demo/x", "Demo/y"]
    assert chunks[2].entries.dest_paths() == ["Demo/z"]


def test_partition_is_stable():
    members = [ChunkMembership("pakchunk0"), ChunkMembership.from_lines("pakchunk1", ["d/3", "d/1"])]
    chunks = partition(_manifest("d/4", "d/3", "d/2", "d/1"), members)
    assert chunks[0].entries.dest_paths() == ["d/4", "d/2"]
    assert chunks[1].entries.dest_paths() == ["d/3", "d/1"]


def test_membership_matches_case_and_either_separator():
    m = ChunkMembership.from_lines("pakchunk1", ["Demo\\Content\\Maps\\Level.umap"])
    assert m.contains("demo/content/maps/level.umap")
    assert m.contains("DEMO/Content/Maps/Level.umap")
    assert not m.contains("demo/content/maps/other.umap")


def test_without_memberships_everything_is_chunk_zero():
    chunks = partition(_manifest("a", "b"), [])
    assert len(chunks) == 1
    assert chunks[0].id == 0
    assert chunks[0].entries.dest_paths() == ["a", "b"]


def test_load_memberships_reads_listed_files_in_order(tmp_path):
    (tmp_path / "pakchunk0.txt").write_text("", encoding="utf-8")
    (tmp_path / "pakchunk3.txt").write_text("\ufeffDemo/A.uasset\r\n\r\nDemo/B.uasset\n", encoding="utf-8")
    (tmp_path / "pakchunklist.txt").write_text("pakchunk0.txt\npakchunk3.txt\n", encoding="utf-8")
    members = load_memberships(tmp_path / "pakchunklist.txt")
    assert [m.name for m in members] == ["pakchunk0", "pakchunk3"]
    assert members[1].paths == frozenset({"demo/a.uasset", "demo/b.uasset"})


@pytest.mark.parametrize("name,expected", [("pakchunk0", 0), ("pakchunk12", 12), ("PakChunk7-optional", 7)])
def test_chunk_id_from_name(name, expected):
    assert chunk_id_from_name(name) == expected


def test_chunk_id_requires_digits():
    with pytest.raises(InvalidChunkNameError):
        chunk_id_from_name("extras")
