from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import threading

from sqlalchemy import update

from curator.db import session_scope
from curator.models import PlaylistJob, PlaylistJobStatus
from curator.utils.time import now_utc
from curator.workers import persistence
from tests.support import make_request


def _age_job(job_id: int, *, minutes: int) -> None:
    with session_scope() as session:
        session.execute(
            update(PlaylistJob)
            .where(PlaylistJob.id == job_id)
            .values(updated_at=now_utc() - timedelta(minutes=minutes))
        )


def test_submit_creates_pending_job() -> None:
    job, reused = persistence.submit_job(make_request(excluded_genres=("Rock",)))

    assert not reused
    assert job.status == PlaylistJobStatus.PENDING
    assert job.excluded_genres == ["rock"]
    assert job.log_history == []


def test_resubmission_while_building_returns_same_job() -> None:
    first, _ = persistence.submit_job(make_request())
    claimed = persistence.try_claim_next_pending_job()
    assert claimed is not None and claimed.id == first.id

    second, reused = persistence.submit_job(make_request(city="berlin"))

    assert reused
    assert second.id == first.id
    assert second.status == PlaylistJobStatus.BUILDING


def test_different_parameters_create_new_job() -> None:
    first, _ = persistence.submit_job(make_request())
    other, reused = persistence.submit_job(make_request(number_of_songs=3))
    genres, reused_genres = persistence.submit_job(make_request(excluded_genres=("jazz",)))

    assert not reused and not reused_genres
    assert len({first.id, other.id, genres.id}) == 3


def test_failed_job_is_not_reused() -> None:
    first, _ = persistence.submit_job(make_request())
    persistence.try_claim_next_pending_job()
    persistence.fail_job(first.id, message="boom")

    second, reused = persistence.submit_job(make_request())

    assert not reused
    assert second.id != first.id


def test_stale_building_job_is_replaced() -> None:
    first, _ = persistence.submit_job(make_request())
    persistence.try_claim_next_pending_job()
    _age_job(first.id, minutes=10)

    second, reused = persistence.submit_job(make_request(), stale_after_minutes=5)

    assert not reused
    assert second.id != first.id
    stale = persistence.get_job(first.id)
    assert stale is not None
    assert stale.status == PlaylistJobStatus.FAILED
    assert stale.error_message == persistence.STALE_JOB_MESSAGE


def test_claim_takes_oldest_pending_first() -> None:
    first, _ = persistence.submit_job(make_request(city="Berlin"))
    persistence.submit_job(make_request(city="Hamburg"))

    claimed = persistence.try_claim_next_pending_job()

    assert claimed is not None
    assert claimed.id == first.id
    assert claimed.status == PlaylistJobStatus.BUILDING


def test_claim_returns_none_when_queue_empty() -> None:
    assert persistence.try_claim_next_pending_job() is None


def test_concurrent_claims_never_share_a_job() -> None:
    cities = [f"City {index}" for index in range(6)]
    for city in cities:
        persistence.submit_job(make_request(city=city))

    workers = 8
    barrier = threading.Barrier(workers)

    def claim_all() -> list[int]:
        barrier.wait()
        claimed: list[int] = []
        while True:
            job = persistence.try_claim_next_pending_job()
            if job is None:
                return claimed
            claimed.append(job.id)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(lambda _: claim_all(), range(workers)))

    claimed_ids = [job_id for batch in results for job_id in batch]
    assert len(claimed_ids) == len(cities)
    assert len(set(claimed_ids)) == len(cities)


def test_reaper_fails_jobs_building_too_long() -> None:
    stuck, _ = persistence.submit_job(make_request(city="Stuck"))
    persistence.try_claim_next_pending_job()
    fresh, _ = persistence.submit_job(make_request(city="Fresh"))
    persistence.try_claim_next_pending_job()
    _age_job(stuck.id, minutes=31)

    assert persistence.reap_zombies(timeout_minutes=30) == 1

    reaped = persistence.get_job(stuck.id)
    alive = persistence.get_job(fresh.id)
    assert reaped is not None and alive is not None
    assert reaped.status == PlaylistJobStatus.FAILED
    assert reaped.error_message == persistence.ZOMBIE_JOB_MESSAGE
    assert alive.status == PlaylistJobStatus.BUILDING


def test_reaped_job_cannot_be_completed_late() -> None:
    job, _ = persistence.submit_job(make_request())
    persistence.try_claim_next_pending_job()
    _age_job(job.id, minutes=45)
    persistence.reap_zombies(timeout_minutes=30)

    assert not persistence.complete_job(job.id, playlist_id="late")
    assert not persistence.append_job_log(job.id, ["ARTIST:Late"])

    stored = persistence.get_job(job.id)
    assert stored is not None
    assert stored.status == PlaylistJobStatus.FAILED
    assert stored.playlist_id is None


def test_orphan_sweep_fails_idle_building_jobs() -> None:
    building, _ = persistence.submit_job(make_request(city="A"))
    persistence.try_claim_next_pending_job()
    _age_job(building.id, minutes=10)
    pending, _ = persistence.submit_job(make_request(city="B"))

    assert persistence.fail_orphaned_jobs(idle_seconds=60) == 1

    stored = persistence.get_job(building.id)
    assert stored is not None
    assert stored.status == PlaylistJobStatus.FAILED
    assert stored.error_message == persistence.ORPHANED_JOB_MESSAGE
    assert persistence.get_job(pending.id).status == PlaylistJobStatus.PENDING  # type: ignore[union-attr]


def test_orphan_sweep_spares_jobs_another_process_is_building() -> None:
    active, _ = persistence.submit_job(make_request())
    persistence.try_claim_next_pending_job()

    assert persistence.fail_orphaned_jobs(idle_seconds=60) == 0

    assert persistence.get_job(active.id).status == PlaylistJobStatus.BUILDING  # type: ignore[union-attr]
    assert persistence.append_job_log(active.id, ["ARTIST:Still Running"])


def test_append_log_and_progress() -> None:
    job, _ = persistence.submit_job(make_request())
    persistence.try_claim_next_pending_job()

    assert persistence.store_events(job.id, [{"artistName": "Foo"}, {"artistName": "Bar"}])
    assert persistence.append_job_log(job.id, ["Found 2 artists performing."])
    assert persistence.append_job_log(job.id, ["ARTIST:Foo"], processed=1)

    stored = persistence.get_job(job.id)
    assert stored is not None
    assert stored.log_history == ["Found 2 artists performing.", "ARTIST:Foo"]
    assert stored.total_artists == 2
    assert stored.processed_artists == 1


def test_complete_job_records_playlist() -> None:
    job, _ = persistence.submit_job(make_request())
    persistence.try_claim_next_pending_job()

    assert persistence.complete_job(job.id, playlist_id="pl-1")

    stored = persistence.get_job(job.id)
    assert stored is not None
    assert stored.status == PlaylistJobStatus.COMPLETE
    assert stored.playlist_id == "pl-1"

    reused, was_reused = persistence.submit_job(make_request())
    assert was_reused and reused.id == job.id


def test_find_equivalent_ignores_genre_order_and_case() -> None:
    job, _ = persistence.submit_job(make_request(excluded_genres=("Rock", "jazz")))

    match = persistence.find_equivalent_job(make_request(excluded_genres=("JAZZ", "rock")))

    assert match is not None
    assert match.id == job.id
    assert persistence.find_equivalent_job(make_request(min_start_hour=18)) is None


def test_record_progress_only_touches_building_jobs() -> None:
    job, _ = persistence.submit_job(make_request())

    assert not persistence.record_progress(job.id, processed=1)

    persistence.try_claim_next_pending_job()
    assert persistence.record_progress(job.id, processed=2, total=5)

    stored = persistence.get_job(job.id)
    assert stored is not None
    assert (stored.processed_artists, stored.total_artists) == (2, 5)


def test_init_db_creates_job_tables() -> None:
    from sqlalchemy import inspect

    from curator.db import get_engine

    tables = set(inspect(get_engine()).get_table_names())

    assert {"playlist_jobs", "rate_limit_state"} <= tables
