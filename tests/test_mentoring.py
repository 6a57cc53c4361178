import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    DuplicatePendingRequestError,
    ForbiddenError,
    InvalidTransitionError,
)
from app.models.mentorship import MentorshipRequest
from app.models.notification import Notification
from app.schemas.mentoring import MentorshipDecision, MentorshipRequestType, MentorshipStatus
from app.schemas.notification import NotificationType
from app.schemas.user import UserRole, UserStatus
from tests.conftest import as_user


async def _notifications(sessions, recipient_id, type_=None) -> list[Notification]:
    stmt = select(Notification).where(Notification.recipient_id == recipient_id)
    if type_ is not None:
        stmt = stmt.where(Notification.type == type_)
    async with sessions() as session:
        return list((await session.execute(stmt)).scalars())


def _request_body(mentor_id, description="Need help with my resume"):
    return {
        "mentor_id": str(mentor_id),
        "request_type": "resume_review",
        "description": description,
    }


async def test_create_request(client, sessions, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    assert r.status_code == 201
    data = r.json()
    assert data["status"] == "pending"
    assert data["student_id"] == str(student.id)
    assert data["alumni_id"] == str(alumni.id)
    assert data["stopped_by_admin"] is False

    sent = await _notifications(sessions, alumni.id, NotificationType.MENTORSHIP_REQUEST)
    assert len(sent) == 1
    assert str(sent[0].reference_id) == data["id"]


async def test_create_request_short_description(client, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests",
        json=_request_body(alumni.id, "help"),
        headers=as_user(student),
    )
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


async def test_create_request_as_alumni_forbidden(client, make_user, alumni):
    other_alumni = await make_user(UserRole.ALUMNI)
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(other_alumni.id), headers=as_user(alumni)
    )
    assert r.status_code == 403


async def test_create_request_unapproved_student_forbidden(client, make_user, alumni):
    pending_student = await make_user(UserRole.STUDENT, status=UserStatus.PENDING)
    r = await client.post(
        "/api/v1/mentoring/requests",
        json=_request_body(alumni.id),
        headers=as_user(pending_student),
    )
    assert r.status_code == 403


async def test_create_request_unknown_mentor(client, student):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(uuid.uuid4()), headers=as_user(student)
    )
    assert r.status_code == 404
    assert r.json()["code"] == "MENTOR_NOT_FOUND"


async def test_create_request_unapproved_mentor(client, make_user, student):
    pending_alumni = await make_user(UserRole.ALUMNI, status=UserStatus.PENDING)
    r = await client.post(
        "/api/v1/mentoring/requests",
        json=_request_body(pending_alumni.id),
        headers=as_user(student),
    )
    assert r.status_code == 404


async def test_duplicate_pending_request(client, student, alumni):
    first = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    assert first.status_code == 201

    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    assert r.status_code == 409
    assert r.json()["code"] == "MENTORSHIP_REQUEST_PENDING"


async def test_concurrent_create_requests_single_pending(mentorship, sessions, student, alumni):
    attempts = 5
    results = await asyncio.gather(
        *(
            mentorship.create_request(
                student, alumni.id, MentorshipRequestType.CAREER, "Career guidance please"
            )
            for _ in range(attempts)
        ),
        return_exceptions=True,
    )

    created = [r for r in results if isinstance(r, MentorshipRequest)]
    conflicts = [r for r in results if isinstance(r, DuplicatePendingRequestError)]
    assert len(created) == 1
    assert len(conflicts) == attempts - 1

    async with sessions() as session:
        pending = await session.execute(
            select(func.count(MentorshipRequest.id)).where(
                MentorshipRequest.student_id == student.id,
                MentorshipRequest.alumni_id == alumni.id,
                MentorshipRequest.status == MentorshipStatus.PENDING,
            )
        )
        assert pending.scalar_one() == 1


async def test_new_request_allowed_after_rejection(client, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]
    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/reject", headers=as_user(alumni)
    )
    assert r.status_code == 200

    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    assert r.status_code == 201


async def test_accept_request(client, sessions, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/accept", headers=as_user(alumni)
    )
    assert r.status_code == 200
    assert r.json()["status"] == "accepted"

    sent = await _notifications(sessions, student.id, NotificationType.MENTORSHIP_ACCEPTED)
    assert len(sent) == 1


async def test_reject_request_notifies_student(client, sessions, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/reject", headers=as_user(alumni)
    )
    assert r.json()["status"] == "rejected"
    sent = await _notifications(sessions, student.id, NotificationType.MENTORSHIP_REJECTED)
    assert len(sent) == 1


async def test_respond_by_other_alumni_forbidden(client, make_user, student, alumni):
    other_alumni = await make_user(UserRole.ALUMNI)
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/accept", headers=as_user(other_alumni)
    )
    assert r.status_code == 403


async def test_respond_twice_invalid_transition(client, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]
    await client.post(f"/api/v1/mentoring/requests/{request_id}/accept", headers=as_user(alumni))

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/reject", headers=as_user(alumni)
    )
    assert r.status_code == 400
    data = r.json()
    assert data["code"] == "INVALID_TRANSITION"
    assert data["details"]["current_status"] == "accepted"


async def test_respond_missing_request(client, alumni):
    r = await client.post(
        f"/api/v1/mentoring/requests/{uuid.uuid4()}/accept", headers=as_user(alumni)
    )
    assert r.status_code == 404


async def test_cancel_request(client, student, alumni):
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/cancel", headers=as_user(alumni)
    )
    assert r.status_code == 403

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/cancel", headers=as_user(student)
    )
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/accept", headers=as_user(alumni)
    )
    assert r.status_code == 400


async def test_my_requests(client, student, alumni):
    await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )

    r = await client.get("/api/v1/mentoring/requests/me", headers=as_user(student))
    assert r.status_code == 200
    data = r.json()
    assert data["total"] == 1
    assert data["requests"][0]["other_user"]["id"] == str(alumni.id)

    r = await client.get("/api/v1/mentoring/requests/me", headers=as_user(alumni))
    data = r.json()
    assert data["total"] == 1
    assert data["requests"][0]["other_user"]["name"] == "Sam Student"


async def test_get_request_hidden_from_outsiders(client, make_user, student, alumni):
    outsider = await make_user(UserRole.STUDENT)
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    request_id = r.json()["id"]

    r = await client.get(f"/api/v1/mentoring/requests/{request_id}", headers=as_user(alumni))
    assert r.status_code == 200

    r = await client.get(f"/api/v1/mentoring/requests/{request_id}", headers=as_user(outsider))
    assert r.status_code == 404


async def test_unauthenticated(client):
    r = await client.get("/api/v1/mentoring/requests/me")
    assert r.status_code == 401


# ==================================================================
# Admin force-stop
# ==================================================================


async def _pending_request(client, student, alumni) -> str:
    r = await client.post(
        "/api/v1/mentoring/requests", json=_request_body(alumni.id), headers=as_user(student)
    )
    return r.json()["id"]


async def test_force_stop(client, sessions, student, alumni, admin):
    request_id = await _pending_request(client, student, alumni)

    r = await client.post(
        f"/api/v1/admin/mentorship/requests/{request_id}/force-stop",
        json={"reason": "inappropriate content"},
        headers=as_user(admin),
    )
    assert r.status_code == 200
    data = r.json()
    assert data["stopped_by_admin"] is True
    assert data["stop_reason"] == "inappropriate content"
    assert data["status"] == "cancelled"
    assert data["reviewed_by_admin_id"] == str(admin.id)
    assert data["stopped_at"] is not None

    for recipient in (student, alumni):
        sent = await _notifications(
            sessions, recipient.id, NotificationType.MENTORSHIP_FORCE_STOPPED
        )
        assert len(sent) == 1
        assert "inappropriate content" in sent[0].message
        assert sent[0].extra["reason"] == "inappropriate content"


async def test_force_stop_is_idempotent(client, sessions, student, alumni, admin):
    request_id = await _pending_request(client, student, alumni)
    url = f"/api/v1/admin/mentorship/requests/{request_id}/force-stop"

    first = await client.post(url, json={"reason": "spam"}, headers=as_user(admin))
    second = await client.post(url, json={"reason": "other"}, headers=as_user(admin))
    assert second.status_code == 200
    assert second.json()["stop_reason"] == "spam"
    assert second.json()["stopped_at"] == first.json()["stopped_at"]

    sent = await _notifications(sessions, student.id, NotificationType.MENTORSHIP_FORCE_STOPPED)
    assert len(sent) == 1


@pytest.mark.parametrize("action", ["accept", "reject", "cancel"])
async def test_force_stop_rejects_resolved_request(client, student, alumni, admin, action):
    request_id = await _pending_request(client, student, alumni)
    actor = student if action == "cancel" else alumni
    await client.post(f"/api/v1/mentoring/requests/{request_id}/{action}", headers=as_user(actor))

    r = await client.post(
        f"/api/v1/admin/mentorship/requests/{request_id}/force-stop",
        json={"reason": "too late"},
        headers=as_user(admin),
    )
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_TRANSITION"


async def test_force_stop_requires_reason(client, student, alumni, admin):
    request_id = await _pending_request(client, student, alumni)
    r = await client.post(
        f"/api/v1/admin/mentorship/requests/{request_id}/force-stop",
        json={"reason": "   "},
        headers=as_user(admin),
    )
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


async def test_force_stop_requires_admin(client, student, alumni):
    request_id = await _pending_request(client, student, alumni)
    r = await client.post(
        f"/api/v1/admin/mentorship/requests/{request_id}/force-stop",
        json={"reason": "nope"},
        headers=as_user(student),
    )
    assert r.status_code == 403


async def test_respond_after_force_stop(client, student, alumni, admin):
    request_id = await _pending_request(client, student, alumni)
    await client.post(
        f"/api/v1/admin/mentorship/requests/{request_id}/force-stop",
        json={"reason": "policy violation"},
        headers=as_user(admin),
    )

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/accept", headers=as_user(alumni)
    )
    assert r.status_code == 403
    assert r.json()["details"]["stop_reason"] == "policy violation"

    r = await client.post(
        f"/api/v1/mentoring/requests/{request_id}/cancel", headers=as_user(student)
    )
    assert r.status_code == 403


async def test_admin_request_listing(client, student, alumni, admin):
    request_id = await _pending_request(client, student, alumni)
    await client.post(
        f"/api/v1/admin/mentorship/requests/{request_id}/force-stop",
        json={"reason": "spam"},
        headers=as_user(admin),
    )

    r = await client.get(
        "/api/v1/admin/mentorship/requests", params={"stopped": True}, headers=as_user(admin)
    )
    assert r.status_code == 200
    assert [row["id"] for row in r.json()["requests"]] == [request_id]

    r = await client.get(
        "/api/v1/admin/mentorship/requests", params={"status": "pending"}, headers=as_user(admin)
    )
    assert r.json()["total"] == 0

    r = await client.get("/api/v1/admin/mentorship/requests", headers=as_user(student))
    assert r.status_code == 403


# ==================================================================
# Concurrent transitions
# ==================================================================


async def _pending(mentorship, student, alumni) -> MentorshipRequest:
    return await mentorship.create_request(
        student, alumni.id, MentorshipRequestType.CAREER, "Career guidance please"
    )


async def test_concurrent_respond_and_force_stop(mentorship, sessions, student, alumni, admin):
    request = await _pending(mentorship, student, alumni)

    results = await asyncio.gather(
        mentorship.respond(request.id, alumni, MentorshipDecision.ACCEPTED),
        mentorship.admin_force_stop(request.id, admin, "spam"),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, MentorshipRequest)]
    failed = [r for r in results if isinstance(r, (ForbiddenError, InvalidTransitionError))]
    assert len(succeeded) == 1
    assert len(failed) == 1

    async with sessions() as session:
        final = await session.get(MentorshipRequest, request.id)
    assert (final.status, final.stopped_by_admin) in (
        (MentorshipStatus.ACCEPTED, False),
        (MentorshipStatus.CANCELLED, True),
    )

    accepted = await _notifications(sessions, student.id, NotificationType.MENTORSHIP_ACCEPTED)
    stopped = await _notifications(
        sessions, student.id, NotificationType.MENTORSHIP_FORCE_STOPPED
    )
    assert len(accepted) + len(stopped) == 1


async def test_concurrent_accept_and_reject(mentorship, sessions, student, alumni):
    request = await _pending(mentorship, student, alumni)

    results = await asyncio.gather(
        mentorship.respond(request.id, alumni, MentorshipDecision.ACCEPTED),
        mentorship.respond(request.id, alumni, MentorshipDecision.REJECTED),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, MentorshipRequest)]
    assert len(succeeded) == 1
    assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1

    async with sessions() as session:
        final = await session.get(MentorshipRequest, request.id)
    assert final.status == succeeded[0].status


async def test_concurrent_cancel_and_accept(mentorship, sessions, student, alumni):
    request = await _pending(mentorship, student, alumni)

    results = await asyncio.gather(
        mentorship.cancel(request.id, student),
        mentorship.respond(request.id, alumni, MentorshipDecision.ACCEPTED),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, MentorshipRequest)]
    assert len(succeeded) == 1
    assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1

    async with sessions() as session:
        final = await session.get(MentorshipRequest, request.id)
    assert final.status == succeeded[0].status
    assert final.status in (MentorshipStatus.CANCELLED, MentorshipStatus.ACCEPTED)
