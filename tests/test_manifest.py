import json

from study_guide.evaluation.coverage import STATUS_FAILED, STATUS_OK, STATUS_UNPROCESSED, CoverageReport
from study_guide.evaluation.manifest import (
    ENTRY_FAILED,
    ENTRY_OK,
    ENTRY_PARTIAL,
    ChunkManifest,
    ManifestEntry,
    chunk_payload_key,
    stepa_prefix,
)


def _manifest(store):
    return ChunkManifest(store, "doc-1", "maximal", "pv123")


def _ok(start, end):
    return ManifestEntry(start, end, ENTRY_OK, stored_key=f"k/{start}_{end}")


def test_keys_follow_layout():
    prefix = stepa_prefix("doc-1", "maximal", "pv123")
    assert prefix == "machine/study-guides/doc-1/maximal/stepA/pv123"
    assert chunk_payload_key(prefix, 13, 18) == prefix + "/chunk_13_18.json"


def test_record_persists_and_reloads(store):
    manifest = _manifest(store)
    manifest.record(_ok(1, 6))
    manifest.record(ManifestEntry(7, 12, ENTRY_FAILED, error_kind="PARSE", error_detail="bad"))

    data = json.loads(store.get(manifest.key))
    assert [e["status"] for e in data["entries"]] == ["ok", "failed"]
    assert data["entries"][0]["updated_at"]

    reloaded = ChunkManifest.load(store, "doc-1", "maximal", "pv123")
    assert reloaded.get(1, 6).status == ENTRY_OK
    assert reloaded.get(7, 12).error_kind == "PARSE"


def test_record_replaces_entry_for_same_range(store):
    manifest = _manifest(store)
    manifest.record(ManifestEntry(1, 6, ENTRY_FAILED, error_kind="SCHEMA"))
    manifest.record(_ok(1, 6))

    assert manifest.get(1, 6).status == ENTRY_OK
    assert len(manifest.entries) == 1


def test_other_prompt_version_is_not_loaded(store):
    _manifest(store).record(_ok(1, 6))
    other = ChunkManifest.load(store, "doc-1", "maximal", "pv999")
    assert other.entries == {}


def test_unreadable_manifest_is_ignored(store):
    manifest = _manifest(store)
    store.put(manifest.key, b"{not json")
    assert ChunkManifest.load(store, "doc-1", "maximal", "pv123").entries == {}


def test_ok_chain_single_entry(store):
    manifest = _manifest(store)
    manifest.record(_ok(1, 6))
    assert [(e.start, e.end) for e in manifest.ok_chain(1, 6)] == [(1, 6)]


def test_ok_chain_from_children(store):
    manifest = _manifest(store)
    manifest.record(_ok(13, 15))
    manifest.record(_ok(16, 18))
    manifest.record(ManifestEntry(13, 18, ENTRY_PARTIAL, error_kind="TRUNCATED"))

    assert [(e.start, e.end) for e in manifest.ok_chain(13, 18)] == [(13, 15), (16, 18)]


def test_ok_chain_with_gap_is_a_miss(store):
    manifest = _manifest(store)
    manifest.record(_ok(13, 15))
    manifest.record(_ok(17, 18))
    assert manifest.ok_chain(13, 18) is None


def test_ok_chain_prefers_longest_entry(store):
    manifest = _manifest(store)
    manifest.record(_ok(1, 3))
    manifest.record(_ok(1, 6))
    manifest.record(_ok(2, 4))
    assert [(e.start, e.end) for e in manifest.ok_chain(1, 6)] == [(1, 6)]


def test_ok_chain_backtracks_past_entry_from_other_chunk_size(store):
    manifest = _manifest(store)
    manifest.record(_ok(1, 4))
    manifest.record(_ok(5, 8))
    manifest.record(_ok(1, 3))
    manifest.record(_ok(4, 6))
    manifest.record(ManifestEntry(1, 6, ENTRY_PARTIAL, error_kind="TRUNCATED"))

    assert [(e.start, e.end) for e in manifest.ok_chain(1, 6)] == [(1, 3), (4, 6)]
    assert [(e.start, e.end) for e in manifest.ok_chain(1, 8)] == [(1, 4), (5, 8)]


def test_resolve_split_with_failed_child(store):
    manifest = _manifest(store)
    manifest.record(_ok(13, 15))
    manifest.record(ManifestEntry(16, 18, ENTRY_FAILED, error_kind="TRUNCATED", error_detail="unbalanced JSON"))
    manifest.record(ManifestEntry(13, 18, ENTRY_PARTIAL, error_kind="TRUNCATED"))

    ranges = manifest.resolve(13, 18)
    assert [(r.start, r.end, r.status) for r in ranges] == [
        (13, 15, STATUS_OK),
        (16, 18, STATUS_FAILED),
    ]
    assert ranges[1].reason == "JSON appears truncated."


def test_resolve_unknown_range_is_unprocessed(store):
    ranges = _manifest(store).resolve(1, 6)
    assert [(r.start, r.end, r.status) for r in ranges] == [(1, 6, STATUS_UNPROCESSED)]


def test_coverage_report_partition_and_lines(store):
    manifest = _manifest(store)
    manifest.record(_ok(1, 12))
    manifest.record(_ok(13, 15))
    manifest.record(ManifestEntry(16, 18, ENTRY_FAILED, error_kind="TRUNCATED"))
    manifest.record(ManifestEntry(13, 18, ENTRY_PARTIAL, error_kind="TRUNCATED"))

    ranges = manifest.resolve(1, 12) + manifest.resolve(13, 18)
    report = CoverageReport(first_slide=1, last_slide=18, ranges=ranges)

    assert report.is_exact_partition()
    assert report.processed == 15
    assert report.total == 18
    assert report.partial
    assert report.missing_lines() == ["Slide 16–18: JSON appears truncated."]
    assert report.to_dict()["processed"] == 15
