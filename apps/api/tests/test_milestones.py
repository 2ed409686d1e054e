"""
Milestone / achievement engine.
"""
from types import SimpleNamespace
from uuid import uuid4

from models import MilestoneType, UserAchievement
from services.milestone_catalog import default_milestones, seed_milestone_types
from services.milestone_service import (
    check_for_new_achievements,
    compute_progress,
    get_progress,
    list_achievements,
    list_milestone_types,
)


def test_seeding_is_idempotent(db_session):
    first = seed_milestone_types(db_session)
    second = seed_milestone_types(db_session)
    assert first == len(default_milestones())
    assert second == 0
    assert db_session.query(MilestoneType).count() == first


def test_app_startup_seeds_the_catalog(db_session):
    from fastapi.testclient import TestClient
    from main import app

    assert db_session.query(MilestoneType).count() == 0
    with TestClient(app) as client:
        assert client.get("/ping").status_code == 200
    assert db_session.query(MilestoneType).count() == len(default_milestones())


def test_milestone_types_are_ordered_by_procedure_then_count(db_session, milestones):
    types = list_milestone_types(db_session)
    keys = [(t.procedure, t.milestone_count) for t in types]
    assert keys == sorted(keys)


def test_empty_record_set_has_no_progress_and_no_achievements(db_session, milestones, make_user):
    user = make_user()
    assert get_progress(db_session, user=user) == []
    assert check_for_new_achievements(db_session, user=user) == []


def test_single_egg_collection_is_partial_progress(db_session, milestones, make_user, add_records):
    user = make_user()
    add_records(user, "Egg Collection", 1)

    assert check_for_new_achievements(db_session, user=user) == []
    [progress] = get_progress(db_session, user=user)
    assert progress.procedure == "Egg Collection"
    assert progress.current_count == 1
    assert progress.previous_threshold == 0
    assert progress.next_milestone.milestone_count == 5
    assert 0 <= progress.progress_percent < 100
    assert progress.progress_percent == 20.0


def test_crossing_ten_embryo_transfers_awards_exactly_one(db_session, milestones, make_user, add_records):
    user = make_user()
    add_records(user, "Embryo Transfer", 9)
    before = check_for_new_achievements(db_session, user=user)
    assert [a.milestone_type.milestone_count for a in before] == [5]

    add_records(user, "Embryo Transfer", 1)
    new = check_for_new_achievements(db_session, user=user)
    assert len(new) == 1
    assert new[0].milestone_type.procedure == "Embryo Transfer"
    assert new[0].milestone_type.milestone_count == 10
    assert new[0].is_seen is False


def test_check_is_idempotent(db_session, milestones, make_user, add_records):
    user = make_user()
    add_records(user, "Embryo Transfer", 12)

    first = check_for_new_achievements(db_session, user=user)
    second = check_for_new_achievements(db_session, user=user)
    assert len(first) == 2
    assert second == []
    assert db_session.query(UserAchievement).filter(UserAchievement.user_id == user.id).count() == 2


def test_progress_after_reaching_a_threshold_starts_from_it(db_session, milestones, make_user, add_records):
    user = make_user()
    add_records(user, "Embryo Transfer", 10)
    check_for_new_achievements(db_session, user=user)

    [progress] = get_progress(db_session, user=user)
    assert progress.previous_threshold == 10
    assert progress.next_milestone.milestone_count == 25
    assert progress.progress_percent == 0.0
    assert [a.milestone_type.milestone_count for a in progress.achievements] == [5, 10]


def test_progress_sorted_by_count_descending(db_session, milestones, make_user, add_records):
    user = make_user()
    add_records(user, "Consultation", 2)
    add_records(user, "Embryo Transfer", 7)
    add_records(user, "Egg Collection", 2)

    progress = get_progress(db_session, user=user)
    assert [p.procedure for p in progress] == ["Embryo Transfer", "Consultation", "Egg Collection"]


def test_progress_is_complete_when_no_milestone_remains():
    mt = SimpleNamespace(id=uuid4(), procedure="Hysteroscopy", milestone_count=5)
    achieved = SimpleNamespace(milestone_type=mt)

    [progress] = compute_progress({"Hysteroscopy": 7}, [mt], [achieved])
    assert progress.next_milestone is None
    assert progress.progress_percent == 100.0


def test_procedure_without_milestones_reports_full_progress():
    [progress] = compute_progress({"Saline Sonogram": 3}, [], [])
    assert progress.next_milestone is None
    assert progress.progress_percent == 100.0


def test_progress_counts_from_zero_until_a_threshold_is_awarded():
    five = SimpleNamespace(id=uuid4(), procedure="Egg Collection", milestone_count=5)
    ten = SimpleNamespace(id=uuid4(), procedure="Egg Collection", milestone_count=10)

    # Count is 7 but nothing has been awarded, so progress runs from 0 towards 10.
    [progress] = compute_progress({"Egg Collection": 7}, [five, ten], [])
    assert progress.next_milestone is ten
    assert progress.progress_percent == 70.0


def test_achievements_are_kept_after_records_are_deleted(db_session, milestones, make_user, add_records):
    user = make_user()
    rows = add_records(user, "Egg Collection", 5)
    check_for_new_achievements(db_session, user=user)

    for r in rows:
        db_session.delete(r)
    db_session.commit()

    assert check_for_new_achievements(db_session, user=user) == []
    assert len(list_achievements(db_session, user=user)) == 1
    assert get_progress(db_session, user=user) == []


def test_achievements_api(client, db_session, milestones, make_user, add_records, auth_headers):
    user = make_user()
    other = make_user()
    add_records(user, "Egg Collection", 5)

    resp = client.post("/v1/milestones/check", headers=auth_headers(user))
    assert resp.status_code == 200
    [awarded] = resp.json()
    assert awarded["milestone_type"]["badge_name"] == "Egg Collection: Getting Started"

    resp = client.get("/v1/milestones/achievements", params={"unseen": True}, headers=auth_headers(user))
    assert [a["id"] for a in resp.json()] == [awarded["id"]]

    # Someone else's achievement looks missing.
    resp = client.post(f"/v1/milestones/achievements/{awarded['id']}/seen", headers=auth_headers(other))
    assert resp.status_code == 404

    resp = client.post(f"/v1/milestones/achievements/{awarded['id']}/seen", headers=auth_headers(user))
    assert resp.status_code == 200
    assert resp.json()["is_seen"] is True

    resp = client.get("/v1/milestones/achievements", params={"unseen": True}, headers=auth_headers(user))
    assert resp.json() == []

    resp = client.get("/v1/milestones/progress", headers=auth_headers(user))
    [progress] = resp.json()
    assert progress["current_count"] == 5
    assert progress["previous_threshold"] == 5
    assert progress["next_milestone"]["milestone_count"] == 10


def test_milestone_definitions_api(client, milestones, make_user, auth_headers):
    user = make_user()
    resp = client.get("/v1/milestones", headers=auth_headers(user))
    assert resp.status_code == 200
    assert len(resp.json()) == len(default_milestones())
