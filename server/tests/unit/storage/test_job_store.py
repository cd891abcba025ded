"""Job 目录存储测试。"""
import hashlib
import orjson
import pytest
from docscan.common.enums import JobState
from docscan.common.exceptions import InvalidJobIdError
from docscan.common.schemas import (
    DocumentRecord, JobEvent, JobManifest, PageRecord, ScanRequest,
)
from docscan.storage.job_store import (
    JobStore, new_job_id, resolve_job_dir, sha256_file, tail_text_file, validate_job_id,
)


def _manifest(job_id, run_dir, **kw):
    return JobManifest(job_id=job_id, run_dir=str(run_dir), device_id="epjitsu:libusb:001:004",
                       params=ScanRequest(resolution_dpi=300), **kw)


def test_new_job_id_is_valid():
    job_id = new_job_id()
    assert job_id.startswith("job-")
    assert validate_job_id(job_id) == job_id
    assert new_job_id() != job_id


@pytest.mark.parametrize("bad", [
    "", "job-", "../etc/passwd", "job-../../etc", "job-12345678-1234-1234-1234-1234567890ab/..",
    "job-12345678-1234-1234-1234-1234567890a/", "JOB-12345678-1234-1234-1234-1234567890ab",
    "job-12345678-1234-1234-1234-1234567890ab\x00",
])
def test_invalid_job_ids(bad, tmp_path):
    with pytest.raises(InvalidJobIdError):
        resolve_job_dir(tmp_path, bad)


def test_job_dir_stays_inside_base(tmp_path):
    job_id = new_job_id()
    assert resolve_job_dir(tmp_path, job_id) == (tmp_path / job_id).resolve()


def test_create_run_dir_never_reused(tmp_path):
    store = JobStore(tmp_path / "inbox")
    job_id = new_job_id()
    run_dir = store.create_run_dir(job_id)
    assert run_dir.is_dir()
    with pytest.raises(FileExistsError):
        store.create_run_dir(job_id)


@pytest.mark.asyncio
async def test_manifest_round_trip(tmp_path):
    store = JobStore(tmp_path)
    job_id = new_job_id()
    run_dir = store.create_run_dir(job_id)
    manifest = _manifest(
        job_id, run_dir, state=JobState.COMPLETED,
        pages=[PageRecord(index=i, path=f"/p{i}", sha256="a" * 64, mime_type="image/tiff")
               for i in (1, 2, 3)],
        documents=[DocumentRecord(index=1, pages=[1, 2, 3], path="/d1", sha256="b" * 64,
                                  mime_type="image/tiff")],
    )
    await store.write_manifest(run_dir, manifest)
    loaded = await store.read_manifest(run_dir)
    assert loaded == manifest
    assert [p.sha256 for p in loaded.pages] == ["a" * 64] * 3
    # 原子替换后不残留临时文件
    assert sorted(p.name for p in run_dir.iterdir()) == ["manifest.json"]


@pytest.mark.asyncio
async def test_read_manifest_missing_or_corrupt(tmp_path):
    store = JobStore(tmp_path)
    assert await store.read_manifest(tmp_path) is None
    (tmp_path / "manifest.json").write_text("{truncated")
    assert await store.read_manifest(tmp_path) is None


@pytest.mark.asyncio
async def test_events_are_appended(tmp_path):
    store = JobStore(tmp_path)
    await store.append_event(tmp_path, JobEvent(type="job_started", data={"a": 1}))
    await store.append_event(tmp_path, JobEvent(type="job_completed"))
    lines = (tmp_path / "events.jsonl").read_bytes().splitlines()
    assert [orjson.loads(l)["type"] for l in lines] == ["job_started", "job_completed"]
    events = await store.read_events(tmp_path)
    assert events[0].data == {"a": 1}
    assert all(e.timestamp for e in events)


@pytest.mark.asyncio
async def test_read_events_missing_file(tmp_path):
    assert await JobStore(tmp_path).read_events(tmp_path) == []


@pytest.mark.asyncio
async def test_list_jobs_newest_first_with_filter(tmp_path):
    store = JobStore(tmp_path)
    ids = []
    for i, state in enumerate([JobState.COMPLETED, JobState.ERROR, JobState.COMPLETED]):
        job_id = new_job_id()
        run_dir = store.create_run_dir(job_id)
        await store.write_manifest(run_dir, _manifest(
            job_id, run_dir, state=state, created_at=f"2026-01-0{i + 1}T00:00:00+00:00"))
        ids.append(job_id)
    orphan = new_job_id()
    store.create_run_dir(orphan)
    (tmp_path / "not-a-job").mkdir()

    jobs = await store.list_jobs()
    assert [j.job_id for j in jobs if j.state != "unknown"] == [ids[2], ids[1], ids[0]]
    assert {j.job_id for j in jobs if j.state == "unknown"} == {orphan}

    completed = await store.list_jobs(state="completed")
    assert [j.job_id for j in completed] == [ids[2], ids[0]]
    assert len(await store.list_jobs(limit=1)) == 1


@pytest.mark.asyncio
async def test_list_jobs_missing_base(tmp_path):
    assert await JobStore(tmp_path / "nope").list_jobs() == []


@pytest.mark.asyncio
async def test_list_jobs_other_base(tmp_path):
    store = JobStore(tmp_path / "inbox")
    elsewhere = tmp_path / "elsewhere"
    job_id = new_job_id()
    run_dir = store.create_run_dir(job_id, elsewhere)
    await store.write_manifest(run_dir, _manifest(job_id, run_dir))
    assert await store.list_jobs() == []
    assert [j.job_id for j in await store.list_jobs(base_dir=elsewhere)] == [job_id]


@pytest.mark.asyncio
async def test_sha256_file(tmp_path):
    path = tmp_path / "page_0001.tiff"
    path.write_bytes(b"x" * 20000)
    assert await sha256_file(path) == hashlib.sha256(b"x" * 20000).hexdigest()


@pytest.mark.asyncio
async def test_tail_text_file(tmp_path):
    path = tmp_path / "scanner.stderr.log"
    path.write_text("a" * 10 + "END")
    assert await tail_text_file(path, 3) == "END"
    assert await tail_text_file(tmp_path / "missing.log") == ""
